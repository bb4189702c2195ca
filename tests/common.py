import io, logging, socket, unittest

LABEL_LOGGER = "toxikk-firewall"

class LogFilter(logging.Filter):
    def __init__(self, focus):
        super().__init__()
        self.focus = focus

    def filter(self, record):
        if self.focus is None:
            return True
        return self.focus == record.levelno

class LoggableTestCase(type):
    """
    Metaclass that captures the relay logger per level for every test.

    Declare test cases like so:
      class ExampleTests(common.TestCase, metaclass=common.LoggableTestCase)
    and read captured lines with self.getLogs('info').
    """
    def __new__(cls, name, bases, dct):

        setUp = dct.get('setUp', lambda self: None)
        def wrappedSetUp(self):
            self.logger = logging.getLogger(LABEL_LOGGER)
            self.logger.setLevel(logging.DEBUG)

            self.logStreams = {}
            self.logHandlers = {}

            methods = [
                (None, 'all'),
                (logging.DEBUG, 'debug'),
                (logging.INFO, 'info'),
                (logging.WARNING, 'warning'),
                (logging.ERROR, 'error'),
            ]
            for scope, label in methods:
                self.logStreams[label] = stream = io.StringIO()
                self.logHandlers[label] = handler = logging.StreamHandler(stream)
                handler.addFilter(LogFilter(scope))
                self.logger.addHandler(handler)
            setUp(self)
        dct['setUp'] = wrappedSetUp

        def getLogs(self, scope = 'all'):
            stream = self.logStreams[scope]
            stream.seek(0, 0)
            return [l.strip() for l in stream.readlines()]
        dct['getLogs'] = getLogs

        tearDown = dct.get('tearDown', lambda self: None)
        def wrappedTearDown(self):
            tearDown(self)
            for key in self.logHandlers:
                self.logger.removeHandler(self.logHandlers[key])
        dct['tearDown'] = wrappedTearDown

        return type.__new__(cls, name, bases, dct)

class FakeClock:
    def __init__(self, now = 1000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds

def udp_socket(host = "127.0.0.1", port = 0, timeout = 0.5):
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind((host, port))
    sock.settimeout(timeout)
    return sock

class TestCase(unittest.TestCase):

    def assertContains(self, value, enumerable):
        self.assertTrue(value in enumerable, "%r not found in %r" % (value, enumerable))

    def assertDoesNotContain(self, value, enumerable):
        self.assertFalse(value in enumerable, "%r unexpectedly found in %r" % (value, enumerable))

    def assertEmpty(self, obj):
        self.assertEqual(0, len(obj))

    def assertNotEmpty(self, obj):
        self.assertNotEqual(0, len(obj))

    def assertSingle(self, obj, condition = None):
        if condition is None:
            self.assertEqual(1, len(obj))
            return obj[0]

        matches = [i for i in obj if condition(i)]
        self.assertEqual(1, len(matches))
        return matches.pop()

    def assertStartsWith(self, expected, val):
        self.assertTrue(val.startswith(expected), "%r does not start with %r" % (val, expected))

    def assertNothingReceived(self, sock):
        with self.assertRaises(socket.timeout):
            sock.recvfrom(65536)

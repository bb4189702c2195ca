#!/usr/bin/env python3
import logging
from logging.handlers import RotatingFileHandler
import argparse, os, sys, signal, threading
from flask import Flask, request, Response, jsonify

from firewall.config import ConfigError, load_config, parse_listen, read_cfg
from firewall.relay import PortRelay

CONFIG_PATH = os.getenv("CONFIG_PATH", "config.yml")
LOG_FORMAT = "%(asctime)s %(levelname)s %(message)s"

app = Flask(__name__)

logger = logging.getLogger("toxikk-firewall")

relays = []
threads = []
state = {"log_file": None}
lock = threading.RLock()

USAGE = """%(prog)s <IPv4> <port1> [<port2> ...]

IPv4: IP address to listen on (must be a specific IP so that it has priority over the game server's 0.0.0.0 listen IP)
port: Port numbers to listen on and forward to the server"""

def setup_logging(log_file=None, level=logging.INFO):
    logger.setLevel(level)
    for h in list(logger.handlers):
        logger.removeHandler(h)
    sh = logging.StreamHandler(sys.stdout)
    sh.setFormatter(logging.Formatter(LOG_FORMAT))
    logger.addHandler(sh)
    if log_file:
        d = os.path.dirname(log_file)
        if d:
            os.makedirs(d, exist_ok=True)
        fh = RotatingFileHandler(log_file, maxBytes=5*1024*1024, backupCount=2, encoding="utf-8")
        fh.setFormatter(logging.Formatter(LOG_FORMAT))
        logger.addHandler(fh)
    state["log_file"] = log_file

# -----------------------------
# LIFECYCLE
# -----------------------------
def start_all(cfg):
    with lock:
        for rc in cfg.relay_configs():
            relay = PortRelay(rc)
            t = threading.Thread(target=relay.run, name=f"relay-{rc.port}", daemon=True)
            relays.append(relay)
            threads.append(t)
            t.start()
        logger.info(f"[START] {len(relays)} relay(s) on {cfg.external_ip}: {', '.join(str(p) for p in cfg.ports)}")

def wait_all():
    for t in list(threads):
        t.join()

# -----------------------------
# HTTP UI
# -----------------------------
@app.route("/", methods=["GET"])
def index():
    with lock:
        items = [r.snapshot() for r in relays]
    rows = ""
    for s in items:
        blocked = ", ".join(s["blocked"]) or "—"
        rows += f"""
        <tr>
          <td>{s['port']}</td>
          <td>{s['listen']}</td>
          <td>{'listening' if s['listening'] else 'down'}</td>
          <td>{s['sessions']}</td>
          <td>{s['active']}</td>
          <td>{s['delayed']}</td>
          <td>{blocked}</td>
        </tr>
        """
    html = f"""
    <html><head><meta charset="utf-8"><title>Toxikk Firewall</title>
    <style>
      body {{ font-family: ui-sans-serif, system-ui, -apple-system, Segoe UI, Roboto, Arial; max-width: 1100px; margin: 20px auto; }}
      table {{ border-collapse: collapse; width: 100%; }}
      th, td {{ border: 1px solid #ddd; padding: 8px; text-align:left; }}
      th {{ background:#f5f5f5; }}
    </style>
    </head><body>

    <h2>Relays</h2>
    <table>
      <thead><tr>
        <th>Port</th><th>Listen</th><th>State</th><th>Sessions</th><th>Active</th><th>Delayed</th><th>Blocked IPs</th>
      </tr></thead>
      <tbody>
        {rows}
      </tbody>
    </table>
    <p><a href="/status">Status (JSON)</a> · <a href="/logs">Log</a></p>

    </body></html>"""
    return Response(html, mimetype="text/html")

@app.route("/status", methods=["GET"])
def status():
    with lock:
        return jsonify({"relays": [r.snapshot() for r in relays]})

@app.route("/logs", methods=["GET"])
def logs():
    path = state.get("log_file")
    n = request.args.get("n", "200")
    try: n = max(1, min(10000, int(n)))
    except ValueError: n = 200
    if not path or not os.path.exists(path): return Response("not found", status=404)
    try:
        with open(path, "rb") as f:
            f.seek(0, os.SEEK_END); size = f.tell()
            chunk = min(size, 1024*64); f.seek(-chunk, os.SEEK_END)
            data = f.read().decode("utf-8", errors="replace")
        lines = data.splitlines()[-n:]
        return Response("\n".join(lines), mimetype="text/plain; charset=utf-8")
    except OSError as e:
        return Response(f"read error: {e}", status=500)

def sigterm(_sig, _frm):
    logger.info("[EXIT] shutting down")
    sys.exit(0)

def parse_args(argv=None):
    ap = argparse.ArgumentParser(
        description="UDP relay with connection delay and ban-list in front of a game server on 127.0.0.1.",
        usage=USAGE,
    )
    ap.add_argument("ip", nargs="?", help="external IPv4 address to listen on")
    ap.add_argument("ports", nargs="*", help="ports to listen on and forward to 127.0.0.1:<port>")
    ap.add_argument("--config", default=CONFIG_PATH, help=f"YAML config file (default: {CONFIG_PATH})")
    ap.add_argument("--ui", default=None, help="serve the status UI on host:port")
    ap.add_argument("--log-file", default=None, help="also log to this file (rotated at 5 MiB)")
    return ap, ap.parse_args(argv)

def main(argv=None):
    ap, args = parse_args(argv)
    try:
        cfg = load_config(args.ip, args.ports, read_cfg(args.config))
        ui_listen = parse_listen(args.ui) if args.ui else cfg.ui_listen
    except ConfigError as e:
        print(e, file=sys.stderr)
        ap.print_usage(sys.stderr)
        return 1

    setup_logging(args.log_file or cfg.log_file)
    signal.signal(signal.SIGTERM, sigterm)
    signal.signal(signal.SIGINT, sigterm)
    start_all(cfg)

    if not ui_listen:
        wait_all()
        return 0
    host, port = ui_listen
    app.run(host=host, port=port, debug=False, use_reloader=False)
    return 0

if __name__ == "__main__":
    sys.exit(main())

# -- coding: utf-8 --

import argparse
import datetime
import os
import socketserver

from core.config.schema import MockDeviceConfigBlock
from device.base import DeviceConfig
from device.mock import MockDevice


def _format_ts() -> str:
    ts = datetime.datetime.now()
    return f"{ts:%Y-%m-%d %H:%M:%S}.{ts.microsecond // 1000:03d}"


class _TCPServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self, server_address, handler_cls, *, controller: MockDevice):
        super().__init__(server_address, handler_cls)
        self.controller = controller


class _Handler(socketserver.BaseRequestHandler):
    server: _TCPServer

    def handle(self):
        addr = self.client_address
        print(f"{_format_ts()} CONNECT {addr[0]}:{addr[1]}", flush=True)
        buf = b""
        while True:
            data = self.request.recv(1024)
            if not data:
                break
            buf += data
            while b"\r" in buf:
                line, buf = buf.split(b"\r", 1)
                command = line.decode("ascii", errors="replace").strip()
                _status, reply = self.server.controller.execute(command)
                print(f"{_format_ts()} {command!r} -> {reply!r}", flush=True)
                self.request.sendall(reply.encode("ascii") + b"\r")
        print(f"{_format_ts()} DISCONNECT {addr[0]}:{addr[1]}", flush=True)


def main():
    p = argparse.ArgumentParser(
        description="Simulate a CV-X controller's command port (and its log output)"
    )
    p.add_argument("--host", default="127.0.0.1", help="Listen host")
    p.add_argument("--port", type=int, default=8502, help="Listen port")
    p.add_argument(
        "--log-dir",
        default="",
        help="Directory to drop result/image logs into (the trigger's output_dir)",
    )
    p.add_argument("--mode", choices=("run", "setup"), default="run")
    p.add_argument("--program", type=int, default=0)
    p.add_argument("--record", default="program={program},result=0")
    args = p.parse_args()

    controller = MockDevice(
        DeviceConfig(
            host=args.host,
            port=args.port,
            mock=MockDeviceConfigBlock(
                start_mode=args.mode,
                start_program=args.program,
                record=args.record,
            ),
        )
    )
    controller.connect()
    if args.log_dir:
        os.makedirs(args.log_dir, exist_ok=True)
        controller.start_result_log(0, args.log_dir)
        controller.start_image_log(args.log_dir)

    server = _TCPServer((args.host, args.port), _Handler, controller=controller)
    print(f"{_format_ts()} Listening on {args.host}:{args.port}", flush=True)
    try:
        server.serve_forever()
    except KeyboardInterrupt:
        print(f"{_format_ts()} Stopped", flush=True)
    finally:
        controller.disconnect()
        server.server_close()


if __name__ == "__main__":
    main()

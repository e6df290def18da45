# -- coding: utf-8 --

import argparse
import datetime
import socket


def _format_ts() -> str:
	ts = datetime.datetime.now()
	return f"{ts:%Y-%m-%d %H:%M:%S}.{ts.microsecond // 1000:03d}"


def _read_line(conn: socket.socket) -> bytes:
	buf = bytearray()
	while not buf.endswith(b"\r"):
		chunk = conn.recv(1024)
		if not chunk:
			break
		buf.extend(chunk)
	return bytes(buf)


def main():
	p = argparse.ArgumentParser(description="Send one command to a CV-X controller")
	p.add_argument('--host', default='192.168.1.233', help='Controller host')
	p.add_argument('--port', type=int, default=8502, help='Controller port')
	p.add_argument('--command', default='RM', help='Command text, e.g. RM, PR, TA')
	p.add_argument('--timeout', type=float, default=3.0, help='Socket timeout in seconds')
	args = p.parse_args()

	payload = args.command.encode('ascii') + b"\r"
	with socket.create_connection((args.host, args.port), timeout=args.timeout) as conn:
		conn.setsockopt(socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
		local = conn.getsockname()
		print(f"{_format_ts()} CONNECT {args.host}:{args.port} local={local[0]}:{local[1]}")
		conn.sendall(payload)
		print(f"{_format_ts()} SEND {args.command!r}")
		reply = _read_line(conn)
		text = reply.decode("ascii", errors="replace").strip()
		status = "ERROR" if text.startswith("ER") else "OK"
		print(f"{_format_ts()} RECV {status} {text!r}")
	print(f"{_format_ts()} CLOSE {args.host}:{args.port}")


if __name__ == "__main__":
	main()

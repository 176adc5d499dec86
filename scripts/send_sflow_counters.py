"""Send synthetic sFlow v5 counter samples to a local collector.

Each datagram carries one standard counter sample with a generic interface
counters record per interface; the octet counters grow by a fixed rate so
the collector shows a steady bps value after the second datagram.
"""

import argparse
import socket
import struct
import time


def generic_interface_record(if_index: int, speed: int, in_octets: int, out_octets: int) -> bytes:
    body = struct.pack("!IIQII", if_index, 6, speed, 1, 3)
    body += struct.pack("!Q", in_octets) + struct.pack("!IIIIII", 0, 0, 0, 0, 0, 0)
    body += struct.pack("!Q", out_octets) + struct.pack("!IIIII", 0, 0, 0, 0, 0)
    body += struct.pack("!I", 0)
    return struct.pack("!II", 1, len(body)) + body


def counter_datagram(agent_ip: str, seq: int, uptime_ms: int, records: list[bytes]) -> bytes:
    sample = struct.pack("!III", seq, 0, len(records)) + b"".join(records)
    header = struct.pack("!II", 5, 1) + socket.inet_aton(agent_ip)
    header += struct.pack("!IIII", 0, seq, uptime_ms, 1)
    return header + struct.pack("!II", 2, len(sample)) + sample


def main():
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument("--host", default="127.0.0.1")
    parser.add_argument("--port", type=int, default=6343)
    parser.add_argument("--agent", default="10.0.0.1", help="Agent address written into the datagram")
    parser.add_argument("--interfaces", type=int, default=4)
    parser.add_argument("--count", type=int, default=60)
    parser.add_argument("--interval", type=float, default=1.0)
    parser.add_argument("--mbps", type=float, default=100.0, help="Simulated inbound rate per interface")
    args = parser.parse_args()

    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    bytes_per_tick = int(args.mbps * 1_000_000 / 8 * args.interval)
    octets = {i: [0, 0] for i in range(1, args.interfaces + 1)}
    start = time.monotonic()

    for seq in range(1, args.count + 1):
        records = []
        for if_index, counters in octets.items():
            counters[0] += bytes_per_tick
            counters[1] += bytes_per_tick // 2
            records.append(generic_interface_record(if_index, 1_000_000_000, counters[0], counters[1]))
        uptime_ms = int((time.monotonic() - start) * 1000)
        sock.sendto(counter_datagram(args.agent, seq, uptime_ms, records), (args.host, args.port))
        time.sleep(args.interval)


if __name__ == "__main__":
    main()

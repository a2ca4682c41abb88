"""Stand-in for db5.3_stat -d: reports metadata for a fake dump file.

FAKE_STAT_SLEEP=N   sleep N seconds before answering
"""
import os
import sys
import time


def main():
    path = sys.argv[-1]
    delay = os.environ.get("FAKE_STAT_SLEEP")
    if delay:
        time.sleep(float(delay))
    try:
        with open(path, encoding="ascii") as f:
            data_lines = sum(1 for line in f if line.startswith(" "))
    except OSError as e:
        sys.stderr.write(f"db5.3_stat: {path}: {e.strerror}\n")
        return 1

    sys.stdout.write(
        "Thu Jan  1 00:00:00 2026\tLocal time\n"
        "61561\tHash magic number\n"
        "9\tHash version number\n"
        "Little-endian\tByte order\n"
        "Flags\n"
        "4096\tUnderlying database page size\n"
        "0\tSpecified fill factor\n"
        f"{data_lines // 2}\tNumber of keys in the database\n"
        f"{data_lines // 2}\tNumber of data items in the database\n"
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())

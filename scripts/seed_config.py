"""Write a local demo auction into the server and participants YAML seeds."""

import argparse
from datetime import datetime, timedelta
from pathlib import Path
from zoneinfo import ZoneInfo

import yaml

CONFIG_DIR = Path(__file__).resolve().parent.parent / "bidgate" / "config"


def main() -> None:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("auction_id")
    parser.add_argument("--starts-in", type=int, default=0, help="minutes from now")
    parser.add_argument("--duration", type=int, default=60, help="minutes")
    parser.add_argument("--bidder", action="append", default=[])
    args = parser.parse_args()

    server_path = CONFIG_DIR / "server.yaml"
    server = yaml.safe_load(server_path.read_text()) or {}
    zone = ZoneInfo(server.get("timezone", "America/Mexico_City"))
    starts = datetime.now(zone).replace(microsecond=0) + timedelta(minutes=args.starts_in)
    ends = starts + timedelta(minutes=args.duration)

    windows = server.setdefault("windows", {"backend": "in_memory"})
    auctions = windows.setdefault("options", {}).setdefault("auctions", [])
    auctions[:] = [item for item in auctions if item.get("id_subasta") != args.auction_id]
    auctions.append(
        {
            "id_subasta": args.auction_id,
            "precio_base": "1000",
            "monto_minimo_puja": "100",
            "inicio": starts.strftime("%Y-%m-%d %H:%M:%S"),
            "fin": ends.strftime("%Y-%m-%d %H:%M:%S"),
            "estado": "activa",
        }
    )
    server_path.write_text(yaml.safe_dump(server, sort_keys=False))

    participants_path = CONFIG_DIR / "participants.yaml"
    participants = yaml.safe_load(participants_path.read_text()) or {}
    entries = participants.setdefault("auctions", [])
    entries[:] = [item for item in entries if item.get("id_subasta") != args.auction_id]
    entries.append({"id_subasta": args.auction_id, "postores": args.bidder or ["postor-1"]})
    participants_path.write_text(yaml.safe_dump(participants, sort_keys=False))

    print(f"seeded {args.auction_id}: {starts.isoformat()} -> {ends.isoformat()}")


if __name__ == "__main__":
    main()

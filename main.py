import argparse
import json
import logging
import sys

import cv2

from cardlens.core.config_manager import load_config
from cardlens.core.logging_setup import setup_logging
from cardlens.services.scanner_service import CardRecognitionService

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Identify trading cards from photos.")
    parser.add_argument("images", nargs="*", help="Image files to scan")
    parser.add_argument("--type", dest="card_type", default=None,
                        help="Card type hint: foil, old_card, borderless, dark, low_contrast, standard")
    parser.add_argument("--config", default=None, help="Path to scanner_config.json")
    parser.add_argument("--refresh", action="store_true", help="Force a bulk catalog download")
    parser.add_argument("--lookup", default=None, help="Look up a card by name, id or set_number")
    parser.add_argument("--no-remote", action="store_true", help="Skip the remote vision service")
    return parser.parse_args(argv)


def main(argv=None) -> int:
    args = parse_args(argv)
    setup_logging()

    config = load_config(args.config)
    if args.no_remote:
        config["remote_vision_enabled"] = False

    service = CardRecognitionService(config)
    try:
        service.load_catalog(force_refresh=args.refresh)
        if config["remote_vision_enabled"]:
            service.check_remote_health()

        if args.lookup:
            card = service.lookup(args.lookup)
            print(json.dumps(card.model_dump(mode="json") if card else None, indent=2))

        for path in args.images:
            frame = cv2.imread(path)
            if frame is None:
                logger.error(f"Could not read image {path}")
                continue
            result = service.scan(frame, args.card_type)
            print(json.dumps({"image": path, **result.model_dump(mode="json", exclude={"candidates", "attempts"})}, indent=2))
    finally:
        service.shutdown()
    return 0


if __name__ == "__main__":
    sys.exit(main())

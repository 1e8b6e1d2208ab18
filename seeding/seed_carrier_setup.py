#!/usr/bin/env python3
"""
Write a carrier setup onto a seller (or onto the default carrier record) in the IMS.

- Reads the setup from a JSON file
- DF setups must carry a valid instruction list (pattern/attributes objects)
- Keeps the other data extensions already stored in the dataDocument

Usage:
  python seed_carrier_setup.py --carrier DF --seller-id 1234 --setup-file df-setup.json
  python seed_carrier_setup.py --carrier GLS --setup-file gls-default.json   # default carrier
  python seed_carrier_setup.py --carrier DF --seller-id 1234 --setup-file df-setup.json --dry-run

IMS credentials are read from ClientId / ClientSecret / ApiKey in the environment.
"""

import argparse
import json
import sys
from typing import Any, Dict, List, Optional

from carrier_common.ims import ImsClient, get_ims, lookup_carrier, parse_data_document

EXTENSIONS = {"DF": "DFTransport", "GLS": "GLSTransport"}

def _pattern_problems(pattern: Dict[str, Any], where: str) -> List[str]:
    problems = []
    for field, constraint in pattern.items():
        path = f"{where}.{field}"
        if isinstance(constraint, dict):
            problems.extend(_pattern_problems(constraint, path))
        elif isinstance(constraint, list):
            # Lists are sets of allowed values; objects and lists in them never match
            if any(isinstance(v, (dict, list)) for v in constraint):
                problems.append(f"{path}: list entries must be plain values")
    return problems

def validate_instructions(instructions: Any) -> List[str]:
    """Return a list of problems with an instruction list (empty when valid)."""
    if not isinstance(instructions, list):
        return ["instructions must be a list"]
    problems = []
    for i, instruction in enumerate(instructions):
        if not isinstance(instruction, dict):
            problems.append(f"instruction {i} must be an object")
            continue
        # A missing or null pattern matches every shipment
        pattern = instruction.get("pattern")
        if isinstance(pattern, dict):
            problems.extend(_pattern_problems(pattern, f"instruction {i}: pattern"))
        elif pattern is not None:
            problems.append(f"instruction {i}: pattern must be an object")
        if not isinstance(instruction.get("attributes"), dict):
            problems.append(f"instruction {i}: attributes must be an object")
    return problems

def merged_document(entity: Dict[str, Any], extension_name: str, setup: Dict[str, Any]) -> Dict[str, Any]:
    doc = parse_data_document(entity)
    doc[extension_name] = setup
    return doc

def seed_setup(ims: ImsClient, carrier: str, setup: Dict[str, Any],
               seller_id: Optional[str] = None, dry_run: bool = False) -> Dict[str, Any]:
    extension_name = EXTENSIONS[carrier]

    if seller_id:
        entity = ims.get(f"sellers/{seller_id}")
        path = f"sellers/{seller_id}"
    else:
        entity = lookup_carrier(ims.get("carriers"), carrier)
        if entity is None:
            raise ValueError(f"No carrier by the name {carrier}; deploy the stack first")
        path = f"carriers/{entity['id']}"

    doc = merged_document(entity, extension_name, setup)
    if dry_run:
        print(json.dumps(doc, indent=2))
    else:
        ims.patch(path, {"dataDocument": json.dumps(doc)})
        print(f"✓ {extension_name} written to {path}")
    return doc

def main(argv: Optional[List[str]] = None) -> int:
    ap = argparse.ArgumentParser(description="Seed a carrier setup into the IMS")
    ap.add_argument("--carrier", required=True, choices=sorted(EXTENSIONS))
    ap.add_argument("--setup-file", required=True)
    ap.add_argument("--seller-id")
    ap.add_argument("--dry-run", action="store_true")
    args = ap.parse_args(argv)

    with open(args.setup_file, encoding="utf-8") as f:
        setup = json.load(f)
    if not isinstance(setup, dict):
        print("Error: setup file must contain a JSON object")
        return 1

    if args.carrier == "DF":
        problems = validate_instructions(setup.get("instructions"))
        if problems:
            for p in problems:
                print(f"✗ {p}")
            return 1

    seed_setup(get_ims(), args.carrier, setup, args.seller_id, args.dry_run)
    return 0

if __name__ == "__main__":
    sys.exit(main())

# layers/carrier_common/python/carrier_common/instructions.py
"""
Instruction matching for carrier setups.

A seller's carrier setup holds an ordered list of instructions:

    [
      {"pattern": {"deliveryAddress": {"countryCode": ["DK", "FO"]},
                   "termsOfDelivery": "Pallet"},
       "attributes": {"ShippingType": "Pallegods", "ProductCode": "PL", "WhoPays": "Prepaid"}},
      {"pattern": {},
       "attributes": {"ShippingType": "Stykgods", "ProductCode": "PK", "WhoPays": "Prepaid"}}
    ]

A pattern constraint is a scalar (equality), a list (membership) or a nested
pattern (recursive match). Patterns must be acyclic.
"""

from typing import Any, Dict, Iterable, Mapping


class InstructionNotFound(LookupError):
    pass


def _same(value: Any, expected: Any) -> bool:
    # JSON booleans never equal JSON numbers
    if isinstance(value, bool) != isinstance(expected, bool):
        return False
    if isinstance(value, (Mapping, list)):
        return False
    return value == expected


def matches(subject: Any, pattern: Mapping[str, Any]) -> bool:
    """Return True when every field constraint in pattern holds for subject."""
    if not isinstance(pattern, Mapping):
        return False
    if not pattern:
        return True
    if not isinstance(subject, Mapping):
        return False

    for field, constraint in pattern.items():
        value = subject.get(field)
        if isinstance(constraint, (list, tuple)):
            ok = any(_same(value, c) for c in constraint)
        elif isinstance(constraint, Mapping):
            ok = matches(value, constraint)
        else:
            ok = _same(value, constraint)
        if not ok:
            return False
    return True


def select_instruction(instructions: Iterable[Mapping[str, Any]], subject: Any) -> Dict[str, Any]:
    """
    Return the attributes of the first instruction whose pattern matches subject.

    Raises InstructionNotFound when nothing matches. An instruction without a
    pattern (or with a null one) matches everything; a pattern that is not a
    mapping matches nothing.
    """
    for instruction in instructions or []:
        if not isinstance(instruction, Mapping):
            continue
        pattern = instruction.get("pattern")
        if matches(subject, {} if pattern is None else pattern):
            return instruction.get("attributes") or {}
    raise InstructionNotFound("No instruction matches the subject")

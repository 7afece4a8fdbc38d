from cardidentity.parsers.scryfall import (
    card_from_scryfall,
    card_to_scryfall,
    iter_json_array,
    parse_token_uri,
    parse_type_line,
    token_part_from_card,
)

__all__ = [
    "card_from_scryfall",
    "card_to_scryfall",
    "iter_json_array",
    "parse_token_uri",
    "parse_type_line",
    "token_part_from_card",
]

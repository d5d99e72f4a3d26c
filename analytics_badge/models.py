from dataclasses import dataclass


@dataclass
class Property:
    """
    A registered analytics property a badge can be rendered for.
    `account` is the owning account's username (back-reference only).
    """
    id: str
    account: str
    profile: str

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Position:
    key: str
    name: str


POSITIONS: tuple[Position, ...] = (
    Position("friet", "Friet 薯条"),
    Position("burgers", "Hamburgers 汉堡"),
    Position("pizza", "Pizza 披萨"),
    Position("grill", "Grill 烧烤"),
    Position("tapas", "Tapas 西班牙"),
    Position("wok", "Wok 炒锅"),
    Position("keuken", "Keuken 厨房"),
    Position("teppanyaki", "Teppanyaki 铁板烧"),
    Position("dimsum", "Dim sum 点心"),
    Position("bbq", "BBQ 烧烤台"),
    Position("sushi", "Sushi 寿司"),
    Position("poke", "Poke 夏威夷饭"),
    Position("seafood", "Seafood 海鲜"),
    Position("desserts", "Desserts 甜点"),
    Position("cleaning", "Schoonmaak 卫生"),
    Position("other", "Overig 其他"),
    Position("roastedduck", "Roasted Duck 烤鸭"),
    Position("noodles", "Noodles 拉面"),
    Position("kebab", "Kebab 土耳其烤肉"),
    Position("soup", "Soup 汤品"),
)

_BY_KEY = {p.key: p for p in POSITIONS}


def get_position(key: str) -> Position | None:
    return _BY_KEY.get(key)


def position_label(key: str) -> str:
    position = _BY_KEY.get(key)
    return position.name if position else key

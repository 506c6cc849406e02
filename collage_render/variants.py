"""
Variant enumeration: one collage variant per photographed member, with that
member rotated into the layout's center position.
"""

from typing import List, Sequence

from loguru import logger

from collage_render.errors import InsufficientPhotosError, InvalidOrderError
from collage_render.layout import get_layout
from collage_render.models import GridKind, Member, Order, Variant

MIN_PHOTOGRAPHED_MEMBERS = 2

# Upstream rosters are not consistent about which identifier they fill in,
# so a candidate is located by the first key that matches. This tolerates
# inconsistent data; it does not guarantee a correct match when two members
# share a name.
MEMBER_MATCH_KEYS = ('id', 'roll_number', 'name')


def find_member_index(roster: Sequence[Member], candidate: Member,
                      keys: Sequence[str] = MEMBER_MATCH_KEYS) -> int:
    """Position of candidate in roster by prioritized keys, or -1."""
    for key in keys:
        wanted = getattr(candidate, key, None)
        if not wanted:
            continue
        for index, member in enumerate(roster):
            if getattr(member, key, None) == wanted:
                return index
    return -1


def rotate_to_center(roster: Sequence[Member], candidate: Member, position: int,
                     center_index: int) -> List[Member]:
    """
    New roster with candidate at center_index and the displaced member moved
    to the candidate's old position. The input roster is left untouched.
    """
    rotated = list(roster)
    if position != center_index:
        displaced = rotated[center_index]
        rotated[center_index] = candidate
        rotated[position] = displaced
    return rotated


def enumerate_variants(order: Order, grid_kind: GridKind, center_index: int) -> List[Variant]:
    """
    One Variant per photographed member, in roster order.

    Raises InsufficientPhotosError when fewer than two members have a photo.
    Candidates that cannot be located in the roster, or whose key repeats an
    earlier candidate's, are skipped.
    """
    if not order.members:
        raise InvalidOrderError(
            f"Order {order.id} has no members",
            details={'order_id': order.id}
        )

    photographed = order.photographed_members()
    if len(photographed) < MIN_PHOTOGRAPHED_MEMBERS:
        raise InsufficientPhotosError(len(photographed), MIN_PHOTOGRAPHED_MEMBERS)

    grid_kind = GridKind(grid_kind)
    center_index = max(0, min(center_index, len(order.members) - 1))

    variants = []
    seen_ids = set()
    for candidate in photographed:
        position = find_member_index(order.members, candidate)
        if position == -1:
            logger.warning(f"Order {order.id}: cannot locate member {candidate.key!r} in roster, skipping")
            continue

        variant_id = f"{grid_kind.prefix}variant-{candidate.key}"
        if variant_id in seen_ids:
            logger.warning(f"Order {order.id}: duplicate member key {candidate.key!r}, skipping")
            continue
        seen_ids.add(variant_id)

        members = rotate_to_center(order.members, candidate, position, center_index)
        variants.append(Variant(
            id=variant_id,
            center_member=candidate,
            members=tuple(members),
            center_index=center_index,
            grid_kind=grid_kind,
        ))

    logger.debug(f"Order {order.id}: {len(variants)} {grid_kind.value} variants")
    return variants


def generate_grid_variants(order: Order, grid_kind: GridKind) -> List[Variant]:
    """Variants for a grid kind using that grid's center position."""
    grid_kind = GridKind(grid_kind)
    if grid_kind == GridKind.HEXAGONAL:
        # The center polygon is always the first hexagon slot
        center_index = 0
    else:
        center_index = get_layout(len(order.members)).center_index
    return enumerate_variants(order, grid_kind, center_index)

"""
Unit tests for variant enumeration.
"""

import pytest

from collage_render.errors import InsufficientPhotosError, InvalidOrderError
from collage_render.layout import get_layout
from collage_render.models import GridKind, Member, Order
from collage_render.variants import (
    enumerate_variants, find_member_index, generate_grid_variants, rotate_to_center
)


class TestFindMemberIndex:
    """Prioritized key matching tolerates inconsistent identifiers."""

    def setup_method(self):
        self.roster = [
            Member(id='a', name='Ana', roll_number='1'),
            Member(id='b', name='Ben', roll_number='2'),
            Member(id='c', name='Cy', roll_number='3'),
        ]

    def test_match_by_id(self):
        assert find_member_index(self.roster, Member(id='c', name='Someone')) == 2

    def test_falls_back_to_roll_number(self):
        assert find_member_index(self.roster, Member(id='zz', roll_number='2')) == 1

    def test_falls_back_to_name(self):
        assert find_member_index(self.roster, Member(id='zz', name='Ana')) == 0

    def test_not_found(self):
        assert find_member_index(self.roster, Member(id='zz', name='Nobody')) == -1


class TestRotateToCenter:

    def test_swaps_candidate_and_displaced_member(self):
        roster = ['a', 'b', 'c', 'd']
        assert rotate_to_center(roster, 'b', 1, 3) == ['a', 'd', 'c', 'b']

    def test_input_roster_not_mutated(self):
        roster = ['a', 'b', 'c', 'd']
        rotated = rotate_to_center(roster, 'a', 0, 2)

        assert roster == ['a', 'b', 'c', 'd']
        assert rotated is not roster

    def test_candidate_already_in_center(self):
        assert rotate_to_center(['a', 'b', 'c'], 'b', 1, 1) == ['a', 'b', 'c']


class TestEnumerateVariants:

    def test_one_variant_per_photographed_member(self, order_factory):
        order = order_factory.order(count=6, photographed=4)
        variants = generate_grid_variants(order, GridKind.SQUARE)

        assert [v.id for v in variants] == [
            'square-variant-m0', 'square-variant-m1', 'square-variant-m2', 'square-variant-m3'
        ]

    def test_center_member_rotated_into_center_index(self, order_factory):
        order = order_factory.order(count=5)
        variants = generate_grid_variants(order, GridKind.SQUARE)
        center_index = get_layout(5).center_index

        for variant in variants:
            assert variant.center_index == center_index
            assert variant.members[center_index].id == variant.center_member.id
            assert sorted(m.id for m in variant.members) == sorted(m.id for m in order.members)

    def test_displaced_member_takes_candidate_position(self, order_factory):
        order = order_factory.order(count=5)
        variant = generate_grid_variants(order, GridKind.SQUARE)[1]

        # m1 moves to the center index (4); m4 moves to m1's old position
        assert [m.id for m in variant.members] == ['m0', 'm4', 'm2', 'm3', 'm1']

    def test_order_roster_untouched(self, order_factory):
        order = order_factory.order(count=5)
        before = [m.id for m in order.members]
        generate_grid_variants(order, GridKind.SQUARE)
        assert [m.id for m in order.members] == before

    def test_hexagonal_variants_use_first_slot(self, order_factory):
        order = order_factory.order(count=12)
        variants = generate_grid_variants(order, GridKind.HEXAGONAL)

        assert len(variants) == 12
        assert all(v.id.startswith('hexagonal-variant-') for v in variants)
        assert all(v.members[0].id == v.center_member.id for v in variants)

    def test_unphotographed_members_stay_on_roster(self, order_factory):
        order = order_factory.order(count=5, photographed=2)
        variants = generate_grid_variants(order, GridKind.SQUARE)

        assert len(variants) == 2
        assert all(len(v.members) == 5 for v in variants)

    def test_single_photographed_member_is_rejected(self, order_factory):
        order = order_factory.order(count=5, photographed=1)

        with pytest.raises(InsufficientPhotosError) as exc_info:
            generate_grid_variants(order, GridKind.SQUARE)

        assert "fewer than two photographed participants" in str(exc_info.value)
        assert exc_info.value.details['photographed_members'] == 1

    def test_blank_photo_counts_as_missing(self):
        order = Order.model_validate({'_id': 'o', 'gridTemplate': 'square', 'members': [
            {'id': 'a', 'name': 'A', 'photo': '   '},
            {'id': 'b', 'name': 'B', 'photo': 'https://example.com/b.jpg'},
        ]})
        with pytest.raises(InsufficientPhotosError):
            enumerate_variants(order, GridKind.SQUARE, 0)

    def test_empty_roster(self):
        order = Order.model_validate({'_id': 'o', 'gridTemplate': 'square', 'members': []})
        with pytest.raises(InvalidOrderError):
            enumerate_variants(order, GridKind.SQUARE, 0)

    def test_nineteen_photographed_members(self, order_factory):
        """19 photographed members on a square grid give 19 variants on the 19 layout."""
        order = order_factory.order(count=19)

        layout = get_layout(len(order.members))
        variants = generate_grid_variants(order, GridKind.SQUARE)

        assert layout.catalogue_size == 19
        assert (layout.columns, layout.rows) == (6, 7)
        assert len(variants) == 19
        assert len({v.id for v in variants}) == 19
        assert all(v.center_index == 9 for v in variants)

    def test_variant_ids_are_deterministic(self, order_factory):
        first = [v.id for v in generate_grid_variants(order_factory.order(count=8), GridKind.SQUARE)]
        second = [v.id for v in generate_grid_variants(order_factory.order(count=8), GridKind.SQUARE)]
        assert first == second

    def test_duplicate_member_ids_yield_one_variant(self, order_factory):
        document = order_factory.document(count=4)
        document['members'][3]['id'] = 'm1'

        variants = generate_grid_variants(Order.model_validate(document), GridKind.SQUARE)
        ids = [v.id for v in variants]

        assert ids == ['square-variant-m0', 'square-variant-m1', 'square-variant-m2']
        assert len(set(ids)) == len(ids)

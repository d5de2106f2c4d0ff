import math

import pytest

from fruit_price.core.price_associator import AssociationPolicy, PriceAssociator, ReferencePoint
from fruit_price.core.price_text import extract_prices, first_price
from fruit_price.core.types import Detection, TextFragment


def test_detection_gets_tag_inside_its_box():
    associator = PriceAssociator()
    detection = Detection(label='apple', confidence=0.9, bbox=(10, 10, 50, 50))
    fragments = [
        TextFragment(text='1.99', anchor=(30, 30)),
        TextFragment(text='0.99', anchor=(200, 200)),
    ]

    [association] = associator.match([detection], fragments)

    assert association.detection == detection
    assert association.price_text == '1.99'
    assert association.distance == pytest.approx(0.0)


def test_distance_is_euclidean_between_reference_points():
    associator = PriceAssociator()
    detection = Detection(label='pear', confidence=0.8, bbox=(0, 0, 20, 40))
    fragment = TextFragment(text='2,49', bbox=(40, 50, 60, 70))

    [association] = associator.match([detection], [fragment])

    assert association.distance == pytest.approx(math.hypot(50 - 10, 60 - 20))
    assert association.fragment == fragment


@pytest.mark.parametrize('max_distance, matched', [(4.9, False), (5.0, True), (5.1, True), (None, True)])
def test_association_succeeds_iff_within_max_distance(max_distance, matched):
    associator = PriceAssociator(AssociationPolicy(max_distance=max_distance))
    detection = Detection(label='kiwi', confidence=0.7, bbox=(0, 0, 10, 10))

    [association] = associator.match([detection], [TextFragment(text='0.59', anchor=(8, 9))])

    if matched:
        assert association.price_text == '0.59'
        assert association.distance == pytest.approx(5.0)
    else:
        assert association.price_text is None
        assert association.distance is None


def test_equidistant_tags_prefer_higher_confidence():
    associator = PriceAssociator()
    detection = Detection(label='plum', confidence=0.6, bbox=(0, 0, 20, 20))
    fragments = [
        TextFragment(text='1.00', anchor=(10, 0), confidence=0.4),
        TextFragment(text='2.00', anchor=(10, 20), confidence=0.8),
        TextFragment(text='3.00', anchor=(0, 10), confidence=None),
    ]

    [association] = associator.match([detection], fragments)

    assert association.price_text == '2.00'


def test_equidistant_tags_with_equal_confidence_keep_first_seen():
    associator = PriceAssociator()
    detection = Detection(label='plum', confidence=0.6, bbox=(0, 0, 20, 20))
    fragments = [
        TextFragment(text='1.00', anchor=(10, 0), confidence=0.5),
        TextFragment(text='2.00', anchor=(10, 20), confidence=0.5),
        TextFragment(text='3.00', anchor=(20, 10), confidence=0.5),
    ]

    results = {associator.match([detection], fragments)[0].price_text for _ in range(20)}

    assert results == {'1.00'}


def test_one_tag_can_price_several_detections():
    associator = PriceAssociator(AssociationPolicy(max_distance=100))
    detections = [
        Detection(label='orange', confidence=0.9, bbox=(0, 0, 40, 40)),
        Detection(label='orange', confidence=0.8, bbox=(60, 0, 100, 40)),
    ]

    associations = associator.match(detections, [TextFragment(text='1,29 €', anchor=(50, 50))])

    assert [a.price_text for a in associations] == ['1,29 €', '1,29 €']
    assert [a.detection for a in associations] == detections


def test_price_only_policy_skips_non_price_text_and_normalizes():
    associator = PriceAssociator(AssociationPolicy(price_only=True))
    detection = Detection(label='banana', confidence=0.9, bbox=(0, 0, 20, 20))
    fragments = [
        TextFragment(text='BANANE', anchor=(10, 10), confidence=0.99),
        TextFragment(text='1,29 €/kg', anchor=(10, 40), confidence=0.6),
    ]

    [association] = associator.match([detection], fragments)

    assert association.price_text == '1.29'
    assert association.distance == pytest.approx(30.0)


def test_bottom_center_reference_point():
    associator = PriceAssociator(AssociationPolicy(reference_point=ReferencePoint.BOTTOM_CENTER))
    detection = Detection(label='lemon', confidence=0.9, bbox=(0, 0, 20, 40))
    fragments = [
        TextFragment(text='top 0.10', anchor=(10, 5)),
        TextFragment(text='bottom 0.20', anchor=(10, 44)),
    ]

    [association] = associator.match([detection], fragments)

    assert association.price_text == 'bottom 0.20'
    assert association.distance == pytest.approx(4.0)


def test_full_frame_text_without_positions_is_shared_fallback():
    associator = PriceAssociator(AssociationPolicy(max_distance=1.0))
    detections = [
        Detection(label='apple', confidence=0.9, bbox=(0, 0, 10, 10)),
        Detection(label='pear', confidence=0.5, bbox=(500, 500, 510, 510)),
    ]

    associations = associator.match(detections, [TextFragment(text='Jabolka 1,99')])

    assert [a.price_text for a in associations] == ['Jabolka 1,99', 'Jabolka 1,99']
    assert all(a.distance is None for a in associations)


def test_fallback_uses_recognized_text_when_no_fragments():
    associator = PriceAssociator(AssociationPolicy(price_only=True))
    detection = Detection(label='apple', confidence=0.9, bbox=(0, 0, 10, 10))

    [association] = associator.match([detection], [], recognized_text='Cena 2 EUR')

    assert association.price_text == '2.00'


def test_no_text_at_all_gives_null_price():
    associator = PriceAssociator()
    detection = Detection(label='apple', confidence=0.9, bbox=(0, 0, 10, 10))

    [association] = associator.match([detection], [])

    assert association.price_text is None
    assert association.distance is None


def test_zero_detections_gives_empty_sequence():
    assert PriceAssociator().match([], [TextFragment(text='1.99', anchor=(1, 1))]) == []


def test_every_detection_appears_once_in_order():
    associator = PriceAssociator(AssociationPolicy(max_distance=15))
    detections = [
        Detection(label='a', confidence=0.9, bbox=(0, 0, 10, 10)),
        Detection(label='b', confidence=0.9, bbox=(100, 100, 110, 110)),
        Detection(label='c', confidence=0.3, bbox=(0, 100, 10, 110)),
    ]

    associations = associator.match(detections, [TextFragment(text='0.49', anchor=(5, 15))])

    assert [a.detection for a in associations] == detections
    assert [a.price_text for a in associations] == ['0.49', None, None]


@pytest.mark.parametrize(
    'text, expected',
    [
        ('1,99 €', ['1.99']),
        ('Cena: 2 EUR', ['2.00']),
        ('€3', ['3.00']),
        ('12.50 € 0,99', ['12.50', '0.99']),
        ('Jabolka Gala', []),
        ('', []),
    ],
)
def test_extract_prices(text, expected):
    assert extract_prices(text) == expected


def test_first_price():
    assert first_price('akcija 0,89 namesto 1,19') == '0.89'
    assert first_price('brez cene') is None

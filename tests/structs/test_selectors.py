import pytest

from steward._cogs.structs.selectors import FieldSelector, LabelSelector, Operator, Requirement


@pytest.mark.parametrize('text, labels, expected', [
    ('a=b', {'a': 'b'}, True),
    ('a==b', {'a': 'b'}, True),
    ('a=b', {'a': 'c'}, False),
    ('a=b', {}, False),
    ('a!=b', {'a': 'c'}, True),
    ('a!=b', {}, True),
    ('a!=b', {'a': 'b'}, False),
    ('a in (b, c)', {'a': 'c'}, True),
    ('a in (b, c)', {'a': 'd'}, False),
    ('a notin (b, c)', {'a': 'd'}, True),
    ('a notin (b, c)', {}, True),
    ('a', {'a': ''}, True),
    ('a', {}, False),
    ('!a', {}, True),
    ('!a', {'a': 'x'}, False),
    ('a=b,c', {'a': 'b', 'c': 'd'}, True),
    ('a=b,c', {'a': 'b'}, False),
    ('', {'a': 'b'}, True),
])
def test_label_selector_matching(text, labels, expected):
    assert LabelSelector.parse(text).matches(labels) is expected


def test_label_selector_from_mapping():
    selector = LabelSelector.from_mapping({'b': '2', 'a': '1'})
    assert str(selector) == 'a=1,b=2'
    assert selector.matches({'a': '1', 'b': '2', 'c': '3'})
    assert not selector.matches({'a': '1'})


def test_label_selectors_are_comparable_for_deduplication():
    assert LabelSelector.parse('b=2,a=1') == LabelSelector.parse('a=1, b=2')
    assert hash(LabelSelector.parse('b=2,a=1')) == hash(LabelSelector.parse('a=1,b=2'))


def test_label_selector_rendering():
    selector = LabelSelector.parse('x in (2,1),!y,z')
    assert str(selector) == 'x in (1,2),!y,z'


def test_empty_selector_is_falsy():
    assert not LabelSelector()
    assert LabelSelector.parse('a')


@pytest.mark.parametrize('text, expected', [
    ('metadata.name=n1', True),
    ('metadata.name==n1', True),
    ('metadata.name!=n1', False),
    ('metadata.namespace=ns1,metadata.name=n1', True),
    ('spec.flag=true', True),
    ('spec.absent=', True),
    ('spec.absent=x', False),
])
def test_field_selector_matching(text, expected):
    body = {'metadata': {'name': 'n1', 'namespace': 'ns1'}, 'spec': {'flag': True}}
    assert FieldSelector.parse(text).matches(body) is expected


def test_field_selector_never_matches_absent_objects():
    assert not FieldSelector.parse('metadata.name=n1').matches(None)


def test_field_selector_rejects_set_operators():
    with pytest.raises(ValueError):
        FieldSelector.parse('a in (b)')


def test_requirement_rendering():
    assert str(Requirement('a', Operator.NOT_EQUALS, ('b',))) == 'a!=b'
    assert str(Requirement('a', Operator.DOES_NOT_EXIST)) == '!a'

import pytest

from app.services.errors import PanelIntegrityError
from app.services.panel.normalizer import (
    IncludedList,
    RelationshipList,
    extract_public_address,
    find_primary_allocation,
    parse_allocation_listing,
    remote_requires_allocation,
)
from panel_payloads import allocation, server_payload


def test_public_address_prefers_default_flag():
    payload = server_payload(
        allocations=[
            allocation(1, ip="10.0.0.1", port=25565),
            allocation(2, ip="10.0.0.2", port=25566, alias="play.example.com", is_default=True),
        ]
    )
    assert extract_public_address(payload) == "play.example.com:25566"


def test_public_address_integer_default_flag():
    payload = server_payload(
        allocations=[
            allocation(1, ip="10.0.0.1", port=25565, is_default=0),
            allocation(2, ip="10.0.0.2", port=25566, is_default=1),
        ]
    )
    assert extract_public_address(payload) == "10.0.0.2:25566"


def test_public_address_falls_back_to_first_allocation():
    payload = server_payload(
        allocations=[
            allocation(1, ip="10.0.0.1", port=25565),
            allocation(2, ip="10.0.0.2", port=25566),
        ]
    )
    assert extract_public_address(payload) == "10.0.0.1:25565"


def test_public_address_none_without_allocations():
    assert extract_public_address(server_payload(allocations=[])) is None
    assert extract_public_address(server_payload()) is None
    assert extract_public_address(None) is None
    assert extract_public_address("not a payload") is None


def test_public_address_none_without_port():
    payload = server_payload(allocations=[allocation(1, ip="10.0.0.1", port=None)])
    assert extract_public_address(payload) is None


def test_public_address_from_top_level_relationships():
    payload = server_payload(allocations=[allocation(7, ip="1.2.3.4", port=30000)], nested=False)
    assert extract_public_address(payload) == "1.2.3.4:30000"


def test_public_address_from_included_side_load():
    included = [
        {"type": "user", "attributes": {"id": 3}},
        {"type": "allocation", "attributes": {"id": 4, "ip": "5.6.7.8", "port": 27015}},
        {"type": "allocation", "attributes": {"id": 5, "ip": "5.6.7.9", "port": 27016, "is_default": True}},
    ]
    payload = server_payload(included=included)
    assert extract_public_address(payload) == "5.6.7.9:27016"


def test_parse_listing_tags_shape():
    rel = parse_allocation_listing(server_payload(allocations=[allocation(1)]))
    assert isinstance(rel, RelationshipList)
    assert rel.allocations[0].id == 1

    inc = parse_allocation_listing(server_payload(included=[{"type": "allocation", "attributes": {"id": "9", "ip": "x", "port": 1}}]))
    assert isinstance(inc, IncludedList)
    assert inc.allocations[0].id == 9

    assert parse_allocation_listing({"attributes": {"id": 1}}) is None


def test_primary_allocation_coerces_string_id():
    payload = server_payload(
        primary=5,
        allocations=[
            {"attributes": {"id": "4", "ip": "10.0.0.4", "port": 1000}},
            {"attributes": {"id": "5", "ip": "10.0.0.5", "ip_alias": "mc.example", "port": 2000}},
        ],
    )
    primary = find_primary_allocation(payload)
    assert primary.id == 5
    assert isinstance(primary.id, int)
    assert primary.ip == "10.0.0.5"
    assert primary.alias == "mc.example"
    assert primary.port == 2000


def test_primary_allocation_ignores_default_flag():
    payload = server_payload(
        primary="4",
        allocations=[allocation(4, port=1000), allocation(5, port=2000, is_default=True)],
    )
    assert find_primary_allocation(payload).id == 4


def test_primary_allocation_missing_relationship_entry():
    payload = server_payload(primary=5, allocations=[allocation(4)])
    with pytest.raises(PanelIntegrityError, match="not found in relationships"):
        find_primary_allocation(payload)


def test_primary_allocation_missing_id():
    with pytest.raises(PanelIntegrityError, match="not found in server attributes"):
        find_primary_allocation(server_payload(primary=None, allocations=[allocation(4)]))


def test_primary_allocation_non_numeric_id():
    with pytest.raises(PanelIntegrityError, match="Invalid allocation ID"):
        find_primary_allocation(server_payload(primary="abc", allocations=[allocation(4)]))


def test_primary_allocation_without_relationships():
    with pytest.raises(PanelIntegrityError, match="No allocations"):
        find_primary_allocation(server_payload(primary=4))


@pytest.mark.parametrize(
    "error,expected",
    [
        ({"errors": [{"code": "ValidationException", "detail": "The allocation field is required."}]}, True),
        ({"detail": "Allocation must be provided"}, True),
        ({"message": "missing allocation id"}, True),
        ("allocation required", True),
        ({"errors": [{"detail": "The memory must be an integer."}]}, False),
        ({"detail": "Server is suspended"}, False),
        (None, False),
    ],
)
def test_remote_requires_allocation(error, expected):
    assert remote_requires_allocation(error) is expected

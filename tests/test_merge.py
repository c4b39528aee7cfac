"""
Tests for the multi-source merge engine.
"""
from clanboard.merge import (
    field_differs,
    merge_clan,
    merge_entity,
    merge_members,
    normalize_badges,
    role_bucket,
)


def _by_tag(records):
    return {r["tag"]: r for r in records}


# =============================================================================
# Member lists
# =============================================================================

def test_matched_member_keeps_authoritative_value_and_aliases_identity():
    merged = merge_members(
        [{"tag": "#A", "name": "X"}],
        [[{"tag": "#a", "name": "Y", "role": "elder"}]],
    )

    assert len(merged) == 1
    record = merged[0]
    assert record["in_identity"] is True
    assert record["in_authoritative"] is True
    assert record["name"] == "X"
    assert record["upstream_name"] == "Y"
    assert record["role"] == "elder"
    assert "upstream_tag" not in record
    assert record["is_dirty"] is True
    assert record["is_diff"] is True


def test_tag_matching_ignores_case_and_hash():
    merged = merge_members([{"tag": "#2abc"}], [[{"tag": "2ABC", "nickname": "Bob"}]])

    assert merged[0]["in_identity"] is True
    assert merged[0]["nickname"] == "Bob"
    assert len(merged) == 1


def test_admin_and_elder_are_the_same_bucket():
    merged = merge_members(
        [{"tag": "#A", "name": "X", "role": "admin", "expLevel": 212}],
        [[{"tag": "#A", "name": "X", "role": "Elder", "expLevel": "212"}]],
    )

    record = merged[0]
    assert record["is_dirty"] is False
    assert record["is_diff"] is False
    assert record["upstream_role"] == "Elder"


def test_other_role_labels_are_not_collapsed():
    assert role_bucket("coLeader") == "coleader"
    assert field_differs("role", "coLeader", "leader")
    assert field_differs("role", "member", "admin")


def test_exp_level_mismatch_is_dirty():
    assert field_differs("expLevel", 200, "201")
    assert not field_differs("expLevel", "200", 200)


def test_unmatched_authoritative_member_is_new():
    merged = merge_members([{"tag": "#A", "name": "X"}], [[]])

    record = merged[0]
    assert record["is_new"] is True
    assert record["in_identity"] is False
    assert record["is_dirty"] is False
    assert record["is_diff"] is True
    assert record["is_left"] is False


def test_identity_only_member_is_left_with_fallbacks():
    merged = merge_members(
        [],
        [[
            {"tag": "#B", "nickname": "Bobby"},
            {"tag": "#C"},
        ]],
    )

    records = _by_tag(merged)
    bob = records["#B"]
    assert bob["is_left"] is True
    assert bob["in_authoritative"] is False
    assert bob["in_identity"] is True
    assert bob["is_diff"] is True
    assert bob["name"] == "Bobby"
    assert bob["role"] == "member"
    assert records["#C"]["name"] == "#C"


def test_left_member_backfilled_from_player_detail():
    details = {"#B": {"tag": "#B", "name": "Bob", "townHallLevel": 15, "role": "admin"}}

    merged = merge_members(
        [{"tag": "#A", "name": "Al"}],
        [[{"tag": "#B", "nickname": "Bobby", "role": "coLeader"}]],
        detail_lookup=details.get,
    )

    left = _by_tag(merged)["#B"]
    assert left["name"] == "Bob"
    assert left["townHallLevel"] == 15
    # identity value is kept when both sides have the field
    assert left["role"] == "coLeader"


def test_enrichment_copies_detail_fields_when_enabled():
    details = {"#A": {"warStars": 1200, "heroes": [{"name": "Barbarian King"}], "league": {"id": 1}, "clan": {}}}

    enriched = merge_members([{"tag": "#A"}], [], detail_lookup=details.get, enrich=True)[0]
    plain = merge_members([{"tag": "#A"}], [], detail_lookup=details.get, enrich=False)[0]

    assert enriched["warStars"] == 1200
    assert enriched["league"] == {"id": 1}
    assert "clan" not in enriched
    assert "warStars" not in plain


def test_earlier_identity_list_takes_precedence():
    merged = merge_members(
        [{"tag": "#A"}],
        [
            [{"tag": "#A", "nickname": "first"}],
            [{"tag": "#A", "nickname": "second", "discordId": "42"}],
        ],
    )

    assert merged[0]["nickname"] == "first"
    assert merged[0]["discordId"] == "42"


def test_merge_does_not_mutate_inputs():
    authoritative = [{"tag": "#A", "name": "X"}]
    identity = [{"tag": "#A", "name": "Y"}, {"tag": "#B"}]

    merge_members(authoritative, [identity])

    assert authoritative == [{"tag": "#A", "name": "X"}]
    assert identity == [{"tag": "#A", "name": "Y"}, {"tag": "#B"}]


def test_missing_authoritative_roster_makes_everyone_left():
    merged = merge_members(None, [[{"tag": "#A", "name": "A"}]])
    assert merged[0]["is_left"] is True


# =============================================================================
# Single entities
# =============================================================================

def test_merge_entity_same_collision_rule():
    merged = merge_entity({"tag": "#A", "name": "X"}, {"tag": "#a", "name": "Y", "userId": "7"})

    assert merged == {"tag": "#A", "name": "X", "upstream_name": "Y", "userId": "7"}


def test_merge_entity_with_missing_side():
    assert merge_entity({"tag": "#A"}, None) == {"tag": "#A"}
    assert merge_entity(None, {"tag": "#A"}) == {"tag": "#A"}


def test_merge_clan_prefers_identity_settings():
    clan = merge_clan(
        {"tag": "#A", "name": "LOST", "description": "official", "badgeUrls": {"small": "s"}},
        {"tag": "#A", "name": "LOST", "description": "ours", "maxKickpoints": 10, "index": 1},
    )

    assert clan["description"] == "ours"
    assert "upstream_description" not in clan
    assert clan["maxKickpoints"] == 10
    assert clan["index"] == 1
    assert clan["upstream_name"] == "LOST"


def test_normalize_badges_synthesizes_badge_urls():
    clan = normalize_badges({"badgeUrl": "https://x/b.png"})
    assert clan["badgeUrls"] == {"small": "https://x/b.png", "medium": "https://x/b.png", "large": "https://x/b.png"}

    existing = normalize_badges({"badgeUrl": "a", "badgeUrls": {"small": "b"}})
    assert existing["badgeUrls"] == {"small": "b"}

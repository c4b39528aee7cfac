"""
Tests for the merged, role-filtered views served by ClanService.
"""
import pytest

from clanboard.errors import AccessDenied, CacheMiss
from clanboard.realms import (
    Realm,
    Source,
    clan_path,
    identity_clan_path,
    identity_player_path,
    identity_user_path,
    player_path,
)
from clanboard.roles import CallerContext
from clanboard.service import ClanService, EntityView

MAIN = "#2YUPV0UYC"
PLAYER = "#PYLQ"


@pytest.fixture
def service(session_factory, upstream, clock):
    return ClanService(session_factory=session_factory, client=upstream, clock=clock)


# =============================================================================
# Clan views
# =============================================================================

def test_members_view_merges_and_redacts(service, upstream):
    upstream.add(Realm.COC, Source.AUTHORITATIVE, clan_path(MAIN), {
        "tag": MAIN,
        "memberList": [{"tag": PLAYER, "name": "X", "role": "admin", "expLevel": 200}],
    })
    upstream.add(Realm.COC, Source.IDENTITY, identity_clan_path(MAIN, "/members"), [
        {"tag": "#pylq", "name": "Y", "role": "elder", "userId": "u-1",
         "activeKickpoints": [{"amount": 2}, {"amount": 1}]},
        {"tag": "#GRJC", "nickname": "Gone"},
    ])
    upstream.add(Realm.COC, Source.AUTHORITATIVE, player_path(PLAYER), {"tag": PLAYER, "warStars": 999})
    service.orchestrator.refresh(Realm.COC, Source.AUTHORITATIVE, player_path(PLAYER))

    members = service.merged_view(Realm.COC, EntityView.MEMBERS, CallerContext(role="MEMBER"), tag=MAIN)

    current, left = members
    assert current["name"] == "X"
    assert current["upstream_name"] == "Y"
    assert current["is_dirty"] is True
    assert current["isLinked"] is True
    assert current["activeKickpointsSum"] == 3
    assert "userId" not in current
    assert "upstream_userId" not in current
    assert current["warStars"] == 999
    assert left["is_left"] is True
    assert left["name"] == "Gone"


def test_members_view_without_identity_marks_everyone_new(service, upstream):
    upstream.add(Realm.CR, Source.AUTHORITATIVE, clan_path(MAIN), {"memberList": [{"tag": PLAYER, "name": "X"}]})

    members = service.merged_view(Realm.CR, EntityView.MEMBERS, CallerContext(), tag=MAIN)

    assert members[0]["is_new"] is True
    assert "warStars" not in members[0]


def test_clan_view_lets_identity_own_settings(service, upstream):
    upstream.add(Realm.COC, Source.AUTHORITATIVE, clan_path(MAIN), {"tag": MAIN, "description": "official"})
    upstream.add(Realm.COC, Source.IDENTITY, identity_clan_path(MAIN), {"tag": MAIN, "description": "ours"})

    clan = service.merged_view(Realm.COC, EntityView.CLAN, CallerContext(), tag=MAIN)

    assert clan["description"] == "ours"


def test_clan_view_hides_settings_below_member(service, upstream):
    upstream.add(Realm.COC, Source.AUTHORITATIVE, clan_path(MAIN), {"tag": MAIN, "name": "LOST"})
    upstream.add(Realm.COC, Source.IDENTITY, identity_clan_path(MAIN), {
        "tag": MAIN, "maxKickpoints": 10, "kickpointReasons": [{"name": "missed"}],
    })

    guest = service.merged_view(Realm.COC, EntityView.CLAN, CallerContext(role="NOTMEMBER"), tag=MAIN)
    member = service.merged_view(Realm.COC, EntityView.CLAN, CallerContext(role="MEMBER"), tag=MAIN)

    assert guest["name"] == "LOST"
    assert "maxKickpoints" not in guest
    assert "kickpointReasons" not in guest
    assert member["maxKickpoints"] == 10


def test_clan_view_without_authoritative_source_is_a_miss(service):
    with pytest.raises(CacheMiss):
        service.merged_view(Realm.COC, EntityView.CLAN, CallerContext(), tag=MAIN)


def test_clans_view_hides_cr_waitlist(service, upstream):
    upstream.add(Realm.CR, Source.IDENTITY, "/api/clans", [
        {"tag": MAIN, "name": "LOST", "maxKickpoints": 9},
        {"tag": "waitlist", "name": "Warteliste"},
    ])

    clans = service.merged_view(Realm.CR, EntityView.CLANS, CallerContext())

    assert clans == [{"tag": MAIN, "name": "LOST"}]


@pytest.mark.parametrize("realm", [Realm.COC, Realm.CR])
def test_members_lite_serves_identity_list_redacted(service, upstream, realm):
    upstream.add(realm, Source.IDENTITY, identity_clan_path(MAIN, "/members"), [
        {"tag": PLAYER, "name": "Y", "userId": "u-1", "activeKickpoints": [{"amount": 2}]},
    ])

    members = service.merged_view(realm, EntityView.MEMBERS_LITE, CallerContext(role="MEMBER"), tag=MAIN)

    assert members == [{
        "tag": PLAYER, "name": "Y", "isLinked": True,
        "activeKickpointsCount": 1, "activeKickpointsSum": 2,
    }]
    assert upstream.calls_for(clan_path(MAIN)) == 0


def test_kickpoint_reasons_need_coleader(service, upstream):
    upstream.add(Realm.COC, Source.IDENTITY, identity_clan_path(MAIN, "/kickpoint-reasons"), [{"name": "CW"}])

    with pytest.raises(AccessDenied):
        service.merged_view(Realm.COC, EntityView.KICKPOINT_REASONS, CallerContext(role="ELDER"), tag=MAIN)
    assert service.merged_view(
        Realm.COC, EntityView.KICKPOINT_REASONS, CallerContext(role="COLEADER"), tag=MAIN
    ) == [{"name": "CW"}]


def test_tagged_view_requires_tag(service):
    with pytest.raises(ValueError):
        service.merged_view(Realm.COC, EntityView.MEMBERS, CallerContext())


def test_guild_only_exists_for_coc(service, upstream):
    upstream.add(Realm.COC, Source.IDENTITY, "/api/guild", {"name": "LOST", "membercount": 3, "roles": []})

    assert service.merged_view(Realm.COC, EntityView.GUILD, CallerContext()) == {"name": "LOST", "membercount": 3}
    with pytest.raises(ValueError):
        service.merged_view(Realm.CR, EntityView.GUILD, CallerContext())


# =============================================================================
# Player views
# =============================================================================

def test_player_view_for_self(service, upstream):
    upstream.add(Realm.COC, Source.AUTHORITATIVE, player_path(PLAYER), {"tag": PLAYER, "name": "X"})
    upstream.add(Realm.COC, Source.IDENTITY, identity_player_path(PLAYER), {
        "userId": "u-1", "totalKickpoints": 4, "activeKickpoints": [{"amount": 4}],
    })

    own = service.merged_view(Realm.COC, EntityView.PLAYER, CallerContext(exempt=[PLAYER]), tag=PLAYER)
    other = service.merged_view(Realm.COC, EntityView.PLAYER, CallerContext(), tag=PLAYER)

    assert own["activeKickpointsSum"] == 4
    assert "userId" not in own
    assert "totalKickpoints" not in other


def test_identity_view_denied_before_fetching(service, upstream):
    with pytest.raises(AccessDenied):
        service.merged_view(Realm.COC, EntityView.IDENTITY, CallerContext(), tag=PLAYER)
    assert upstream.calls == []


def test_player_accounts_merges_each_linked_account(service, upstream):
    user_path = identity_user_path("42")
    upstream.add(Realm.COC, Source.IDENTITY, user_path, {"linkedPlayers": [PLAYER], "linkedCrPlayers": []})
    upstream.add(Realm.CR, Source.IDENTITY, user_path, {"linkedPlayers": ["#CRP"]})
    upstream.add(Realm.COC, Source.AUTHORITATIVE, player_path(PLAYER), {"tag": PLAYER, "name": "X"})
    upstream.add(Realm.COC, Source.IDENTITY, identity_player_path(PLAYER), {
        "name": "Y", "activeKickpoints": [{"amount": 3}],
    })

    accounts = service.player_accounts("42")

    assert accounts["cr"] == []
    account = accounts["coc"][0]
    assert account["gameType"] == "coc"
    assert account["upstream_name"] == "Y"
    assert account["activeKickpointsSum"] == 3


# =============================================================================
# Side clans
# =============================================================================

def test_side_clans_listing_includes_history(service, db):
    from clanboard import crud

    crud.sync_side_clans(db, [{"clan_tag": "#PYLQG", "name": "Side", "display_index": 1}])
    crud.upsert_league_stat(db, "#PYLQG", "2026-09", rank=3)
    crud.upsert_league_stat(db, "#PYLQG", "2026-10", rank=1)

    listing = service.side_clans()

    assert listing[0]["clan"]["tag"] == "#PYLQG"
    assert [h["season"] for h in listing[0]["history"]] == ["2026-10", "2026-09"]


def test_user_profile_combines_both_bots(service, upstream):
    user_path = identity_user_path("42")
    upstream.add(Realm.COC, Source.IDENTITY, user_path, {"highestRole": "MEMBER", "nickname": "Al"})
    upstream.add(Realm.CR, Source.IDENTITY, user_path, {"highestRole": "LEADER", "admin": True})

    profile = service.user_profile("42")

    assert profile["highestRole"] == "LEADER"
    assert profile["admin"] is True
    assert profile["nickname"] == "Al"

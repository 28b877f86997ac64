"""
Tests for the mission catalogue and custom mission storage.
"""

import pytest

from strike_engine.missions import MissionStore, build_briefing_text


def custom_payload(**overrides):
    data = {
        'name': "Night Parade",
        'description': "Curses flood the shopping district after dark.",
        'threat': "A hundred low-grade curses and one unknown commander.",
        'objectives': ["Hold the district until dawn", "Find the commander"],
        'danger_factors': ["Poor visibility", "Civilians still inside"],
        'difficulty': 'Hard',
    }
    data.update(overrides)
    return data


def test_builtin_missions_sorted_by_difficulty(missions):
    listed = missions.list_missions()
    assert [m.id for m in listed] == [
        'eishu_middle_school', 'kyoto_goodwill', 'detention_center', 'shibuya_incident'
    ]
    assert not any(m.is_custom for m in listed)


def test_filter_by_difficulty(missions):
    listed = missions.list_missions(difficulty=['Easy', 'Extreme'])
    assert {m.id for m in listed} == {'eishu_middle_school', 'shibuya_incident'}


def test_create_and_fetch_custom_mission(missions):
    mission = missions.create_mission(custom_payload())

    assert mission.id.startswith('custom_')
    assert mission.is_custom
    assert mission.created_by == 'admin'
    assert mission.objectives == ["Hold the district until dawn", "Find the commander"]
    assert missions.get_mission(mission.id) == mission

    listed = missions.list_missions()
    # Custom missions come after the built-in ones
    assert listed[-1].id == mission.id
    assert [m.id for m in missions.list_missions(is_custom=True)] == [mission.id]


def test_update_custom_mission(missions):
    mission = missions.create_mission(custom_payload())

    updated = missions.update_mission(mission.id, {'name': "Night Parade II", 'danger_factors': ["Rain"]})

    assert updated.name == "Night Parade II"
    assert updated.danger_factors == ["Rain"]
    assert updated.description == mission.description


def test_builtin_missions_are_read_only(missions):
    assert missions.update_mission('shibuya_incident', {'name': "Renamed"}) is None
    assert missions.get_mission('shibuya_incident').name == "Shibuya Incident"
    assert not missions.delete_mission('shibuya_incident')


def test_update_and_delete_unknown(missions):
    assert missions.update_mission('custom_missing', {'name': "x"}) is None
    assert not missions.delete_mission('custom_missing')
    assert missions.get_mission('custom_missing') is None


def test_delete_custom_mission(missions):
    mission = missions.create_mission(custom_payload())

    assert missions.delete_mission(mission.id)
    assert missions.get_mission(mission.id) is None


@pytest.mark.parametrize("mission_id, count", [
    ('eishu_middle_school', 5),
    ('kyoto_goodwill', 5),
    ('detention_center', 7),
    ('shibuya_incident', 7),
])
def test_briefing_considerations_scale_with_difficulty(missions, mission_id, count):
    briefing = missions.get_briefing(mission_id)
    assert len(briefing.key_considerations) == count
    assert len(briefing.success_conditions) == 4
    assert len(briefing.failure_conditions) == 4


def test_briefing_text(missions):
    mission = missions.get_mission('shibuya_incident')
    text = build_briefing_text(mission)

    assert text.startswith("**MISSION BRIEFING: Shibuya Incident**")
    assert "The threat level is extreme, which means" in text
    for objective in mission.objectives:
        assert objective in text
    assert missions.get_briefing('nope') is None


def test_custom_missions_persist_across_stores(tmp_path):
    db_path = str(tmp_path / "missions.db")
    store = MissionStore(db_path)
    mission = store.create_mission(custom_payload())
    store.close()

    reopened = MissionStore(db_path)
    try:
        assert reopened.get_mission(mission.id).name == "Night Parade"
        assert len(reopened.list_missions()) == 5
    finally:
        reopened.close()

from relocation_queue.services.records import ClaimState
from relocation_queue.services.snapshot import coerce_flag, extract_claim_states, merge_previous_state
from relocation_queue.services.tables import TableGrid


def test_extract_claim_states_reads_claim_columns() -> None:
    grid = TableGrid(
        header=["ID", "LOCATION", "CLAIMED_BY", "CLAIM_TIME", "NEW_LOCATION", "NOTES", "CLAIMED", "ARRIVAL_TIME"],
        rows=[
            ["a1", "LINE-1", "bob", "2026-10-19 11:00:00", "", "fragile", True, ""],
            ["", "LINE-2", "eve", "", "", "", False, ""],
        ],
    )

    states = extract_claim_states(grid)

    assert list(states) == ["A1"]
    assert states["A1"] == ClaimState(
        claimed_by="bob",
        claim_time="2026-10-19 11:00:00",
        notes="fragile",
        claimed=True,
    )


def test_extract_claim_states_defaults_missing_columns() -> None:
    states = extract_claim_states(TableGrid(header=["ID", "LOCATION"], rows=[["M1", "LINE-2"]]))
    assert states == {"M1": ClaimState()}
    assert extract_claim_states(None) == {}
    assert extract_claim_states(TableGrid(header=["LOCATION"], rows=[["LINE-2"]])) == {}


def test_merge_previous_state_prefers_non_empty_manual_values() -> None:
    queue_states = {
        "A1": ClaimState(claimed_by="bob", claim_time="2026-10-19 11:00:00", claimed=True),
        "M1": ClaimState(claimed_by="amy", notes="old note"),
    }
    manual_states = {
        "M1": ClaimState(notes="from intake", new_location="DOCK-2"),
        "M2": ClaimState(claimed_by="kim"),
    }

    merged = merge_previous_state(queue_states, manual_states)

    assert merged["A1"] == queue_states["A1"]
    assert merged["M1"].claimed_by == "amy"
    assert merged["M1"].notes == "from intake"
    assert merged["M1"].new_location == "DOCK-2"
    assert merged["M2"].claimed_by == "kim"


def test_coerce_flag_understands_sheet_values() -> None:
    assert coerce_flag(True) is True
    assert coerce_flag("TRUE") is True
    assert coerce_flag(1) is True
    assert coerce_flag("") is False
    assert coerce_flag(None) is False
    assert coerce_flag("false") is False

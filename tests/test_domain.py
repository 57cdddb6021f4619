from canvasdex.domain.decoding import EDIT_T0, decode_burn, decode_edit, decode_logs
from canvasdex.domain.merge import copy_event_map, merge_burns, merge_edits

from conftest import OWNER, TRANSFORMER, burn_log, edit_log


def test_topic0_is_keccak_of_signature():
    assert EDIT_T0.startswith("0x") and len(EDIT_T0) == 66


def test_decode_edit_reads_indexed_and_data_fields():
    ev = decode_edit(edit_log(42, 19_700_000, log_index=3, change=17, pixels=512))
    assert ev is not None
    assert (ev.token_id, ev.block_number, ev.log_index) == (42, 19_700_000, 3)
    assert (ev.change_count, ev.new_pixel_count) == (17, 512)
    assert ev.transformer.lower() == TRANSFORMER


def test_decode_burn_keys_by_receiver():
    ev = decode_burn(burn_log(7, 19_700_010, actions=9, commit_id=55))
    assert ev is not None
    assert ev.token_id == 7
    assert ev.total_actions == 9
    assert ev.owner.lower() == OWNER


def test_decode_logs_skips_other_kinds_and_short_data():
    short = edit_log(1, 10)
    short = type(short)(short.address, short.topics, "0x" + "00" * 31, 10, short.tx_hash, 0)
    out = decode_logs("edit", [edit_log(1, 5), burn_log(1, 6), short])
    assert [e.block_number for e in out] == [5]


def _edits(*pairs):
    return [decode_edit(edit_log(k, b)) for k, b in pairs]


def test_merge_sorts_touched_keys_by_block():
    by_key = {}
    touched = merge_edits(by_key, _edits((42, 300), (42, 100), (7, 50), (42, 200)))
    assert touched == {42, 7}
    assert [e.block_number for e in by_key[42]] == [100, 200, 300]


def test_merge_is_idempotent_for_duplicate_events():
    once = {}
    merge_edits(once, _edits((42, 100), (42, 200)))
    twice = copy_event_map(once)
    touched = merge_edits(twice, _edits((42, 200)))
    assert twice == once
    assert touched == set()
    assert len(twice[42]) == 2


def test_merge_leaves_untouched_keys_alone():
    base = {}
    merge_edits(base, _edits((1, 10), (2, 20)))
    untouched_list = base[2]
    touched = merge_edits(base, _edits((1, 5)))
    assert touched == {1}
    assert base[2] is untouched_list
    assert [e.block_number for e in base[1]] == [5, 10]


def test_merge_on_copy_does_not_mutate_original():
    live = {}
    merge_edits(live, _edits((42, 100)))
    work = copy_event_map(live)
    merge_edits(work, _edits((42, 150)))
    assert len(live[42]) == 1
    assert len(work[42]) == 2


def test_merge_burns_by_receiver():
    by_key = {}
    touched = merge_burns(by_key, [decode_burn(burn_log(9, 30)), decode_burn(burn_log(9, 10))])
    assert touched == {9}
    assert [e.block_number for e in by_key[9]] == [10, 30]

"""Tests for the translator and replay engine."""

import pytest

from mcp_timemachine.engine import (
    InvalidChangeDescriptor,
    MalformedLog,
    Timeline,
    diff_to_changes,
    is_opposite_op,
    operation_from_dict,
    operations_from_json,
    parse_change,
    replay,
    translate_change,
    translate_changes,
    validate_operation,
)
from mcp_timemachine.models import ChangeDescriptor, DeleteOp, InsertOp, seed_operation, utf16_len


class TestTranslateChange:
    """Tests for translate_change."""

    def test_replace_emits_delete_then_insert(self):
        """A replace is a delete followed by an insert at the same offset."""
        ops = translate_change(ChangeDescriptor(range_offset=2, range_length=3, text="Z"))
        assert ops == [DeleteOp(start=2, end=5), InsertOp(position=2, text="Z")]

    def test_pure_insert(self):
        ops = translate_change(ChangeDescriptor(range_offset=2, range_length=0, text="Z"))
        assert ops == [InsertOp(position=2, text="Z")]

    def test_pure_delete(self):
        ops = translate_change(ChangeDescriptor(range_offset=2, range_length=2, text=""))
        assert ops == [DeleteOp(start=2, end=4)]

    def test_noop_emits_nothing(self):
        assert translate_change(ChangeDescriptor(range_offset=7, range_length=0, text="")) == []

    def test_replace_reproduces_edit(self):
        """The emitted order replays to the intended text."""
        ops = translate_change(ChangeDescriptor(range_offset=2, range_length=3, text="Z"))
        assert replay([seed_operation("abcdef")] + ops) == "abZf"

    def test_negative_offset_rejected(self):
        with pytest.raises(InvalidChangeDescriptor, match="negative range offset"):
            translate_change(ChangeDescriptor(range_offset=-1, range_length=0, text="x"))

    def test_negative_length_rejected(self):
        with pytest.raises(InvalidChangeDescriptor, match="negative range length"):
            translate_change(ChangeDescriptor(range_offset=0, range_length=-2, text=""))

    def test_non_integer_offset_rejected(self):
        with pytest.raises(InvalidChangeDescriptor):
            translate_change(ChangeDescriptor(range_offset="3", range_length=0, text="x"))


class TestTranslateChanges:
    """Tests for batch translation."""

    def test_batch_order_preserved(self):
        """Multi-cursor batches concatenate in the given order."""
        ops = translate_changes([
            ChangeDescriptor(range_offset=6, range_length=1, text="W"),
            ChangeDescriptor(range_offset=0, range_length=0, text=">"),
        ])
        assert ops == [
            DeleteOp(start=6, end=7),
            InsertOp(position=6, text="W"),
            InsertOp(position=0, text=">"),
        ]
        assert replay([seed_operation("hello world")] + ops) == ">hello World"

    def test_accepts_host_mappings(self):
        ops = translate_changes([{"rangeOffset": 1, "rangeLength": 1, "text": ""}])
        assert ops == [DeleteOp(start=1, end=2)]

    def test_accepts_snake_case_mappings(self):
        ops = translate_changes([{"range_offset": 1, "range_length": 0, "text": "a"}])
        assert ops == [InsertOp(position=1, text="a")]

    def test_missing_field_rejected(self):
        with pytest.raises(InvalidChangeDescriptor, match="missing field"):
            translate_changes([{"rangeOffset": 1, "text": "a"}])

    def test_non_mapping_rejected(self):
        with pytest.raises(InvalidChangeDescriptor):
            parse_change(["not", "a", "change"])

    def test_empty_batch(self):
        assert translate_changes([]) == []

    def test_bounds_follow_earlier_changes_in_batch(self):
        """Each change may reach text inserted by the change before it."""
        ops = translate_changes(
            [ChangeDescriptor(2, 0, "cd"), ChangeDescriptor(3, 1, "X")],
            document_length=2,
        )
        assert replay([seed_operation("ab")] + ops) == "abcX"

    @pytest.mark.parametrize("change", [
        ChangeDescriptor(3, 0, "x"),
        ChangeDescriptor(1, 5, ""),
        ChangeDescriptor(0, 3, "y"),
    ])
    def test_change_past_end_rejected(self, change):
        with pytest.raises(InvalidChangeDescriptor, match="past end of document"):
            translate_changes([change], document_length=2)

    def test_shrinking_batch_checked_against_new_length(self):
        with pytest.raises(InvalidChangeDescriptor, match="length 1"):
            translate_changes(
                [ChangeDescriptor(0, 2, ""), ChangeDescriptor(1, 1, "")],
                document_length=3,
            )

    def test_astral_text_grows_length_in_code_units(self):
        # U+1F600 takes two code units
        ops = translate_changes(
            [ChangeDescriptor(0, 0, "\U0001F600"), ChangeDescriptor(2, 0, "!")],
            document_length=utf16_len(""),
        )
        assert replay(ops) == "\U0001F600!"


class TestReplay:
    """Tests for replay."""

    def test_empty_log(self):
        assert replay([]) == ""

    def test_seed_reconstructs_text(self):
        assert replay([seed_operation("full text\nline two")]) == "full text\nline two"

    def test_fold_order_matters(self):
        """Delete-then-insert and insert-then-delete give different text."""
        seed = seed_operation("xxxyyy")
        delete, insert = DeleteOp(start=0, end=3), InsertOp(position=0, text="abc")

        assert replay([seed, delete, insert]) == "abcyyy"
        assert replay([seed, insert, delete]) != "abcyyy"

    def test_prefix(self):
        log = [InsertOp(position=0, text="hello"), InsertOp(position=5, text=" world")]
        assert replay(log, 0) == ""
        assert replay(log, 1) == "hello"
        assert replay(log, 2) == "hello world"
        assert replay(log, len(log)) == replay(log)

    def test_prefix_out_of_range(self):
        log = [InsertOp(position=0, text="a")]
        with pytest.raises(ValueError):
            replay(log, 2)
        with pytest.raises(ValueError):
            replay(log, -1)

    def test_delete_to_end(self):
        assert replay([seed_operation("abcdef"), DeleteOp(start=3, end=6)]) == "abc"

    def test_empty_delete_is_noop(self):
        assert replay([seed_operation("abc"), DeleteOp(start=1, end=1)]) == "abc"

    def test_insert_past_end_is_malformed(self):
        with pytest.raises(MalformedLog) as exc_info:
            replay([seed_operation("abc"), InsertOp(position=4, text="x")])
        assert exc_info.value.index == 1

    def test_delete_past_end_is_malformed(self):
        with pytest.raises(MalformedLog) as exc_info:
            replay([seed_operation("abc"), DeleteOp(start=1, end=9)])
        assert exc_info.value.index == 1

    def test_reversed_delete_is_malformed(self):
        with pytest.raises(MalformedLog):
            replay([seed_operation("a" * 20), DeleteOp(start=10, end=5)])

    def test_malformed_entry_past_prefix_not_replayed(self):
        """Only the requested prefix is folded."""
        log = [seed_operation("abc"), DeleteOp(start=5, end=9)]
        assert replay(log, 1) == "abc"

    def test_unknown_variant_is_malformed(self):
        with pytest.raises(MalformedLog, match="unrecognized"):
            replay([{"operation": "insert", "position": 0, "text": "a"}])


class TestUtf16Offsets:
    """Offsets count UTF-16 code units."""

    def test_insert_after_astral_character(self):
        # U+1F600 takes two code units
        log = [seed_operation("a\U0001F600b"), InsertOp(position=3, text="X")]
        assert replay(log) == "a\U0001F600Xb"

    def test_delete_astral_character(self):
        log = [seed_operation("a\U0001F600b"), DeleteOp(start=1, end=3)]
        assert replay(log) == "ab"

    def test_length_bound_uses_code_units(self):
        log = [seed_operation("\U0001F600"), InsertOp(position=2, text="!")]
        assert replay(log) == "\U0001F600!"

    def test_split_pair_reassembles(self):
        """States that split a surrogate pair still replay faithfully."""
        log = [
            seed_operation("\U0001F600"),
            InsertOp(position=1, text="x"),
            DeleteOp(start=1, end=2),
        ]
        assert replay(log) == "\U0001F600"


class TestValidateOperation:
    """Tests for validate_operation and decoding."""

    def test_valid_operations(self):
        validate_operation(InsertOp(position=0, text=""))
        validate_operation(DeleteOp(start=3, end=3))

    def test_end_before_start(self):
        with pytest.raises(MalformedLog, match="before start"):
            validate_operation(DeleteOp(start=10, end=5))

    def test_negative_position(self):
        with pytest.raises(MalformedLog):
            validate_operation(InsertOp(position=-1, text="a"))

    def test_boolean_offset(self):
        with pytest.raises(MalformedLog):
            validate_operation(InsertOp(position=True, text="a"))

    def test_non_string_text(self):
        with pytest.raises(MalformedLog):
            validate_operation(InsertOp(position=0, text=5))

    def test_decode_insert(self):
        op = operation_from_dict({"operation": "insert", "position": 2, "text": "hi"})
        assert op == InsertOp(position=2, text="hi")

    def test_decode_delete(self):
        op = operation_from_dict({"operation": "delete", "start": 1, "end": 4})
        assert op == DeleteOp(start=1, end=4)

    def test_decode_unknown_tag(self):
        with pytest.raises(MalformedLog, match="unknown operation tag"):
            operation_from_dict({"operation": "retain", "count": 3})

    def test_decode_missing_field(self):
        with pytest.raises(MalformedLog) as exc_info:
            operation_from_dict({"operation": "delete", "start": 1}, index=7)
        assert exc_info.value.index == 7
        assert "Operation 7" in str(exc_info.value)

    def test_decode_reversed_delete(self):
        with pytest.raises(MalformedLog):
            operation_from_dict({"operation": "delete", "start": 10, "end": 5})

    def test_decode_log_requires_array(self):
        with pytest.raises(MalformedLog, match="must be an array"):
            operations_from_json({"operation": "insert"})

    def test_decode_log_reports_index(self):
        with pytest.raises(MalformedLog) as exc_info:
            operations_from_json([
                {"operation": "insert", "position": 0, "text": "a"},
                "garbage",
            ])
        assert exc_info.value.index == 1


class TestIsOppositeOp:
    """Tests for is_opposite_op."""

    def test_insert_inside_delete(self):
        assert is_opposite_op(InsertOp(position=3, text="a"), DeleteOp(start=2, end=5))
        assert is_opposite_op(DeleteOp(start=2, end=5), InsertOp(position=3, text="a"))

    def test_insert_at_delete_edges(self):
        assert is_opposite_op(InsertOp(position=2, text="a"), DeleteOp(start=2, end=5))
        assert is_opposite_op(InsertOp(position=5, text="a"), DeleteOp(start=2, end=5))

    def test_insert_outside_delete(self):
        assert not is_opposite_op(InsertOp(position=6, text="a"), DeleteOp(start=2, end=5))

    def test_same_variant_never_opposite(self):
        assert not is_opposite_op(InsertOp(position=0, text="a"), InsertOp(position=0, text="a"))
        assert not is_opposite_op(DeleteOp(start=0, end=1), DeleteOp(start=0, end=1))


class TestTimeline:
    """Tests for checkpointed replay."""

    def make_log(self):
        log = [seed_operation("abc")]
        for i in range(10):
            log.append(InsertOp(position=i, text=str(i)))
        log.append(DeleteOp(start=0, end=4))
        return log

    def test_matches_replay_at_every_prefix(self):
        log = self.make_log()
        timeline = Timeline(log, checkpoint_interval=3)
        for n in range(len(log) + 1):
            assert timeline.text_at(n) == replay(log, n)

    def test_matches_replay_in_any_order(self):
        log = self.make_log()
        timeline = Timeline(log, checkpoint_interval=2)
        for n in [len(log), 0, 7, 3, len(log), 1, 9]:
            assert timeline.text_at(n) == replay(log, n)

    def test_extend_keeps_checkpoints_valid(self):
        log = self.make_log()
        timeline = Timeline(log[:6], checkpoint_interval=2)
        timeline.text_at(6)
        assert timeline.extend(log[6:]) == len(log)
        assert timeline.head() == replay(log)
        assert timeline.text_at(5) == replay(log, 5)

    def test_len_and_operations(self):
        log = self.make_log()
        timeline = Timeline(log)
        assert len(timeline) == len(log)
        assert timeline.operations == tuple(log)

    def test_empty_timeline(self):
        assert Timeline().head() == ""

    def test_rejects_bad_interval(self):
        with pytest.raises(ValueError):
            Timeline([], checkpoint_interval=0)

    def test_surfaces_malformed_log(self):
        timeline = Timeline([seed_operation("ab"), DeleteOp(start=0, end=5)])
        assert timeline.text_at(1) == "ab"
        with pytest.raises(MalformedLog):
            timeline.head()


class TestDiffToChanges:
    """Tests for diff_to_changes."""

    def apply(self, before, changes):
        return replay([seed_operation(before)] + translate_changes(changes))

    def test_identical_texts(self):
        assert diff_to_changes("same", "same") == []

    def test_insert_in_middle(self):
        changes = diff_to_changes("hello world", "hello there world")
        assert self.apply("hello world", changes) == "hello there world"

    def test_multiple_regions_ordered_end_first(self):
        before = "one two three four"
        after = "ONE two three FOUR!"
        changes = diff_to_changes(before, after)
        offsets = [c.range_offset for c in changes]
        assert offsets == sorted(offsets, reverse=True)
        assert self.apply(before, changes) == after

    def test_delete_everything(self):
        assert self.apply("gone", diff_to_changes("gone", "")) == ""

    def test_from_empty(self):
        assert diff_to_changes("", "new") == [ChangeDescriptor(range_offset=0, range_length=0, text="new")]

    def test_offsets_are_utf16(self):
        before = "\U0001F600x"
        after = "\U0001F600xy"
        changes = diff_to_changes(before, after)
        assert changes == [ChangeDescriptor(range_offset=3, range_length=0, text="y")]
        assert self.apply(before, changes) == after

    def test_astral_characters_in_both_texts(self):
        before = "\U0001F600 smile \U0001F389"
        after = "\U0001F600 big smile \U0001F38A!"
        assert self.apply(before, diff_to_changes(before, after)) == after

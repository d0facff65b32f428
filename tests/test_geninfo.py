# Copyright (c) 2020-2022, Adam Karpierz
# Licensed under the BSD license
# https://opensource.org/licenses/BSD-3-Clause

from pathlib import Path
import base64
import hashlib

import pytest

from covagg.errors  import MalformedData, VersionMismatch
from covagg.model   import LineState
from covagg.notes   import read_gcno
from covagg.data    import read_gcda
from covagg.geninfo import build_model, solve_flow_graph, capture, initial_capture
from covagg.geninfo import zero_counters, find_units, get_unit_id, get_source_checksums

from gcovgen import make_gcno, make_gcda, FunctionSpec
from gcovgen import on_tree_variant, with_fake_arc, STAMP


def line_hits(source):
    return {record.line: record.hits for record in source.line_records()}


def branch_taken(source):
    return {record.key: record.taken for record in source.branch_records()}


def load_pair(function, counters, **kwargs):
    notes = read_gcno(make_gcno([function], **kwargs), "/build/main.gcno")
    data  = read_gcda(make_gcda([(function, counters)], **kwargs), "/build/main.gcda")
    return notes, data


class TestSolveFlowGraph:

    def test_all_arcs_instrumented(self):
        notes, data = load_pair(FunctionSpec(), [1, 0, 1, 0, 1])
        block_count, arc_count = solve_flow_graph(notes.functions[0], data.functions[1])
        assert block_count == [1, 1, 1, 0, 1]
        assert arc_count == [1, 0, 1, 0, 1]

    def test_on_tree_arcs_are_derived(self):
        notes, data = load_pair(on_tree_variant(), [0, 1, 0])
        block_count, arc_count = solve_flow_graph(notes.functions[0], data.functions[1])
        assert block_count == [1, 1, 1, 0, 1]
        assert arc_count == [1, 0, 1, 0, 1]

    def test_derived_counts(self):
        notes, data = load_pair(on_tree_variant(), [3, 7, 3])
        block_count, arc_count = solve_flow_graph(notes.functions[0], data.functions[1])
        assert block_count == [10, 10, 10, 3, 10]
        assert arc_count == [10, 3, 7, 3, 10]

    def test_without_data(self):
        notes, _ = load_pair(FunctionSpec(), [0] * 5)
        block_count, arc_count = solve_flow_graph(notes.functions[0], None)
        assert block_count == [0] * 5
        assert arc_count == [0] * 5

    def test_inconsistent_counts(self):
        # block 2 is entered once but left 5 times
        notes, data = load_pair(FunctionSpec(arcs=[(0, 2, 0), (2, 3, 1), (2, 4, 0),
                                                   (3, 4, 0), (4, 1, 0)]),
                                [1, 5, 0, 6])
        with pytest.raises(MalformedData):
            solve_flow_graph(notes.functions[0], data.functions[1])


class TestBuildModel:

    def test_post_run(self):
        notes, data = load_pair(FunctionSpec(), [1, 0, 1, 0, 1])
        model = build_model(notes, data)
        assert list(model.files) == ["/work/main.c"]
        source = model.files["/work/main.c"]
        assert line_hits(source) == {3: 1, 4: 1, 5: 0, 7: 1}
        assert source.line_state(5) is LineState.ZERO
        assert source.line_state(3) is LineState.HIT
        assert source.line_state(6) is LineState.ABSENT
        assert branch_taken(source) == {(4, 2, 0): 0, (4, 2, 1): 1}
        assert source.functions["main"].line == 2
        assert source.functions["main"].hits == 1

    def test_on_tree_variant_gives_same_model(self):
        model1 = build_model(*load_pair(FunctionSpec(), [1, 0, 1, 0, 1]))
        model2 = build_model(*load_pair(on_tree_variant(), [0, 1, 0]))
        assert model1 == model2

    def test_initial(self):
        notes, _ = load_pair(FunctionSpec(), [0] * 5)
        model = build_model(notes)
        source = model.files["/work/main.c"]
        assert line_hits(source) == {3: 0, 4: 0, 5: 0, 7: 0}
        assert all(record.instrumented for record in source.line_records())
        assert branch_taken(source) == {(4, 2, 0): None, (4, 2, 1): None}
        assert source.functions["main"].hits == 0

    def test_function_absent_from_data(self):
        function = FunctionSpec()
        notes = read_gcno(make_gcno([function]))
        data  = read_gcda(make_gcda([(function, None)]))
        source = build_model(notes, data).files["/work/main.c"]
        assert line_hits(source) == {3: 0, 4: 0, 5: 0, 7: 0}
        assert branch_taken(source) == {(4, 2, 0): None, (4, 2, 1): None}

    def test_unexecuted_block_has_no_taken_counts(self):
        notes, data = load_pair(FunctionSpec(), [0, 0, 0, 0, 0])
        source = build_model(notes, data).files["/work/main.c"]
        assert branch_taken(source) == {(4, 2, 0): None, (4, 2, 1): None}
        assert source.functions["main"].hits == 0

    def test_fake_arcs_are_not_branches(self):
        notes, data = load_pair(with_fake_arc(), [2, 1, 1, 0, 1, 2])
        source = build_model(notes, data).files["/work/main.c"]
        assert branch_taken(source) == {(4, 2, 0): 1, (4, 2, 1): 1}

    def test_functions_sharing_a_line_keep_their_branches(self):
        fa = FunctionSpec(ident=1, name="fa")
        fb = FunctionSpec(ident=2, name="fb")
        notes = read_gcno(make_gcno([fa, fb]), "/build/main.gcno")
        data  = read_gcda(make_gcda([(fa, [1, 0, 1, 0, 1]), (fb, [1, 1, 0, 1, 1])]),
                          "/build/main.gcda")
        source = build_model(notes, data).files["/work/main.c"]
        assert branch_taken(source) == {(4, 2, 0): 0, (4, 2, 1): 1,
                                        (4, 3, 0): 1, (4, 3, 1): 0}
        assert source.get_branch_found_and_hit() == (4, 2)

    def test_shared_line_takes_largest_block_count(self):
        function = FunctionSpec(lines={2: [3], 3: [5], 4: [5]})
        notes, data = load_pair(function, [2, 1, 1, 1, 2])
        source = build_model(notes, data).files["/work/main.c"]
        assert line_hits(source) == {3: 2, 5: 2}

    def test_artificial_functions_are_skipped(self):
        function = FunctionSpec(name="_GLOBAL__sub_I", artificial=True)
        notes, data = load_pair(function, [1, 0, 1, 0, 1])
        assert len(build_model(notes, data)) == 0

    def test_base_directory(self):
        notes, data = load_pair(FunctionSpec(source="../src/main.c"), [1, 0, 1, 0, 1])
        model = build_model(notes, data, base_directory=Path("/project/build"))
        assert list(model.files) == ["/project/src/main.c"]

    def test_absolute_source_path(self):
        notes, data = load_pair(FunctionSpec(source="/abs/main.c"), [1, 0, 1, 0, 1])
        assert list(build_model(notes, data).files) == ["/abs/main.c"]

    def test_version_mismatch(self):
        function = FunctionSpec()
        notes = read_gcno(make_gcno([function]))
        data  = read_gcda(make_gcda([(function, [0] * 5)], stamp=STAMP + 1))
        with pytest.raises(VersionMismatch):
            build_model(notes, data)


def write_unit(directory: Path, name: str, function: FunctionSpec,
               counters=None, notes=True, data=True):
    directory.mkdir(parents=True, exist_ok=True)
    if notes:
        (directory/f"{name}.gcno").write_bytes(make_gcno([function]))
    if data:
        (directory/f"{name}.gcda").write_bytes(make_gcda([(function, counters)]))


@pytest.fixture
def build_dir(tmp_path):
    write_unit(tmp_path/"a", "a", FunctionSpec(name="fa", source="/src/a.c"),
               [1, 0, 1, 0, 1])
    write_unit(tmp_path/"b", "b", FunctionSpec(name="fb", source="/src/b.c"),
               [0, 0, 0, 0, 0])
    return tmp_path


class TestCapture:

    def test_find_units(self, build_dir):
        (build_dir/"c.gcno").write_bytes(make_gcno([]))
        units = find_units([build_dir])
        assert sorted(Path(unit).name for unit in units) == ["a", "b", "c"]
        unit = get_unit_id((build_dir/"c.gcno").resolve())
        assert units[unit][0] is not None
        assert units[unit][1] is None

    def test_capture(self, build_dir):
        model = capture([build_dir])
        assert sorted(model.files) == ["/src/a.c", "/src/b.c"]
        assert model.files["/src/a.c"].get_line_found_and_hit() == (4, 3)
        assert model.files["/src/b.c"].get_line_found_and_hit() == (4, 0)
        assert model.skipped == []

    def test_capture_with_jobs(self, build_dir):
        assert capture([build_dir], jobs=2) == capture([build_dir])

    def test_initial_capture(self, build_dir):
        model = initial_capture([build_dir])
        assert sorted(model.files) == ["/src/a.c", "/src/b.c"]
        assert model.files["/src/a.c"].get_line_found_and_hit() == (4, 0)

    def test_malformed_data_is_skipped(self, build_dir):
        (build_dir/"b"/"b.gcda").write_bytes(b"garbage!")
        with pytest.warns(UserWarning, match="skipping"):
            model = capture([build_dir])
        assert list(model.files) == ["/src/a.c"]
        assert len(model.skipped) == 1
        assert model.skipped[0].error == "MalformedData"
        assert model.skipped[0].unit.endswith("b")

    def test_notes_without_data(self, build_dir):
        write_unit(build_dir/"c", "c", FunctionSpec(name="fc", source="/src/c.c"),
                   data=False)
        with pytest.warns(UserWarning):
            model = capture([build_dir])
        assert "/src/c.c" not in model
        assert [skipped.error for skipped in model.skipped] == ["MissingPair"]
        assert "/src/c.c" in initial_capture([build_dir])

    def test_data_without_notes(self, build_dir):
        write_unit(build_dir/"d", "d", FunctionSpec(), [1, 0, 1, 0, 1], notes=False)
        with pytest.warns(UserWarning):
            model = capture([build_dir])
        assert [skipped.error for skipped in model.skipped] == ["MissingPair"]
        assert len(initial_capture([build_dir]).skipped) == 0

    def test_include_exclude(self, build_dir):
        assert list(capture([build_dir], include=["*/a.c"]).files) == ["/src/a.c"]
        assert list(capture([build_dir], exclude=["*/a.c"]).files) == ["/src/b.c"]

    def test_no_external(self, build_dir):
        write_unit(build_dir/"e", "e",
                   FunctionSpec(name="fe", source=str(build_dir.resolve()/"e.c")),
                   [1, 0, 1, 0, 1])
        model = capture([build_dir], external=False)
        assert list(model.files) == [str(build_dir.resolve()/"e.c")]

    def test_zero_counters(self, build_dir):
        assert zero_counters([build_dir]) == 2
        assert not list(build_dir.rglob("*.gcda"))
        assert len(list(build_dir.rglob("*.gcno"))) == 2

    def test_coverage_kinds(self, build_dir):
        model = capture([build_dir], function_coverage=False)
        assert all(not source.functions and source.branches
                   for source in model.files.values())
        model = capture([build_dir], branch_coverage=False)
        assert all(source.functions and not source.branches
                   for source in model.files.values())
        assert model.files["/src/a.c"].get_line_found_and_hit() == (4, 3)


def md5_base64(text: str) -> str:
    return base64.b64encode(hashlib.md5(text.encode()).digest()).decode().rstrip("=")


class TestChecksums:

    def test_get_source_checksums(self, tmp_path):
        source = tmp_path/"main.c"
        source.write_text("int x;\n\nint main(void)\n")
        checksums = get_source_checksums(str(source))
        assert checksums == {1: md5_base64("int x;"), 2: md5_base64(""),
                             3: md5_base64("int main(void)")}
        assert len(checksums[1]) == 22

    def test_missing_source(self, tmp_path):
        with pytest.warns(UserWarning, match="could not open"):
            assert get_source_checksums(str(tmp_path/"missing.c")) is None

    def test_capture_with_checksums(self, tmp_path):
        source = tmp_path/"src"/"main.c"
        source.parent.mkdir()
        source.write_text("".join(f"line {lineno}\n" for lineno in range(1, 8)))
        write_unit(tmp_path/"build", "main", FunctionSpec(source=str(source)),
                   [1, 0, 1, 0, 1])
        model = capture([tmp_path/"build"], checksum=True)
        records = model.files[str(source)].lines
        assert {line: record.checksum for line, record in records.items()} == {
            line: md5_base64(f"line {line}") for line in (3, 4, 5, 7)}
        model = capture([tmp_path/"build"])
        assert all(record.checksum is None
                   for record in model.files[str(source)].lines.values())

from updown_controller.utils.storage import scan_jsonl


def test_scan_jsonl_resumes_from_offset(tmp_path):
    path = tmp_path / "log.jsonl"
    assert scan_jsonl(str(path)) == ([], 0)

    path.write_text('{"a": 1}\nnot json\n{"b": 2}')
    rows, pos = scan_jsonl(str(path))
    assert rows == [{"a": 1}]
    assert pos == len('{"a": 1}\nnot json\n')

    with path.open("a") as f:
        f.write("\n[1, 2]\n")
    rows, pos = scan_jsonl(str(path), pos)
    assert rows == [{"b": 2}]
    assert pos == path.stat().st_size
    assert scan_jsonl(str(path), pos) == ([], pos)

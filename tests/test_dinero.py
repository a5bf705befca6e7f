from rvpipesim.dinero import convert, main


def test_convert_records():
    assert convert(["r 1A\n", "w 0x20\n"]) == ["r 1a 1", "w 20 1"]


def test_convert_keeps_any_type_and_stops_at_garbage():
    assert convert("m ff\n? !\nr 1\n") == ["m ff 1"]


def test_convert_empty():
    assert convert("") == []


def test_main_writes_d4_file(tmp_path):
    trace = tmp_path / "t.trace"
    trace.write_text("r 10\nw ABC\n")
    assert main([str(trace)]) == 0
    assert (tmp_path / "t.trace.d4").read_text() == "r 10 1\nw abc 1\n"


def test_main_missing_file(tmp_path, capsys):
    assert main([str(tmp_path / "none")]) == 1
    assert "Invalid file path" in capsys.readouterr().out


def test_main_without_arguments():
    assert main([]) == 1
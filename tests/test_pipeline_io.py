import logging
from pathlib import Path

from batchsvg.pipeline.io import read_gene_list, setup_logger, write_gene_list


def _file_handlers(logger: logging.Logger) -> list[logging.FileHandler]:
    return [h for h in logger.handlers if isinstance(h, logging.FileHandler)]


def test_setup_logger_closes_previous_handlers(tmp_path: Path) -> None:
    name = "batchsvg_io_test"
    first = setup_logger(tmp_path / "a" / "run.log", name)
    old = _file_handlers(first)
    assert len(old) == 1

    second = setup_logger(tmp_path / "b" / "run.log", name)
    assert second is first
    assert old[0] not in second.handlers
    assert old[0].stream is None
    assert len(_file_handlers(second)) == 1

    second.info("hello")
    for handler in list(second.handlers):
        second.removeHandler(handler)
        handler.close()
    assert "hello" in (tmp_path / "b" / "run.log").read_text(encoding="utf-8")
    assert "hello" not in (tmp_path / "a" / "run.log").read_text(encoding="utf-8")


def test_gene_list_skips_comments_and_blanks(tmp_path: Path) -> None:
    path = tmp_path / "genes.txt"
    path.write_text("# header\nVWF\n\nTNNT2  # cardiac\n", encoding="utf-8")
    assert read_gene_list(path) == ["VWF", "TNNT2"]

    out = tmp_path / "nested" / "out.txt"
    write_gene_list(out, ["a", "b"])
    assert read_gene_list(out) == ["a", "b"]

from capprobe.common.state import HostInfo
from capprobe.core.config import ProbeOptions
from capprobe.engine.experiment import ExperimentRow
from capprobe.report import COLUMNS, FAILED, ReportWriter, format_row, report_filename


def _row(**overrides):
    values = dict(
        vendor="GStreamer",
        codec="x264",
        profile="main",
        pattern="smpte",
        width=1920,
        height=1080,
        framerate=30.0,
        bitrate="4096",
        fps_in=29.97,
        max_units=12,
        dispersion=0.5,
        cpu=71.234,
        score=3.5,
        start="2024-05-01 10:00:00",
        elapsed="0:12:34",
    )
    values.update(overrides)
    return ExperimentRow(**values)


def test_report_filename_is_sanitised():
    name = report_filename("media host", "Intel(R) Xeon(R) @ 2.4GHz", "2024-05-01 10:00")
    assert name == "media_host_Intel_R__Xeon_R____2.4GHz_2024-05-01_10_00.tsv"


def test_format_row():
    cells = format_row(_row())
    assert len(cells) == len(COLUMNS)
    assert cells[4:7] == ["1920", "1080", "30"]
    assert cells[8:13] == ["29.97", "12", "0.50", "71.23", "3.50"]


def test_format_failed_row():
    cells = format_row(_row(failed=True, width=None))
    assert cells[4] == "n/a"
    assert cells[8:13] == [FAILED] * 5
    assert cells[-2:] == ["2024-05-01 10:00:00", "0:12:34"]


def test_writer_emits_header_then_rows(tmp_path):
    host = HostInfo(hostname="media-01", processor="EPYC", board="H11", os_name="Debian", ram_gb=32.0)
    opts = ProbeOptions(validate_count=3)
    with ReportWriter(tmp_path / "out", host, opts, "20240501") as report:
        report.write_row(_row())
        report.write_row(_row(failed=True))
    lines = report.path.read_text(encoding="utf-8").splitlines()
    assert report.path.name == "media-01_EPYC_20240501.tsv"
    assert lines[0] == "OS\tDebian"
    assert lines[3] == "RAM\t32.00GB"
    assert lines[4] == "Attempts\t3"
    header = lines.index("\t".join(COLUMNS))
    assert header == 10
    assert lines[header + 1].split("\t")[9] == "12"
    assert lines[header + 2].split("\t")[9] == FAILED

"""Tests for the sheet synchronization pass."""

import pytest
from structlog.testing import capture_logs

from conftest import FakeSheetStore, write_file
from iyield_ingest.exceptions import StoreError
from iyield_ingest.models import OutcomeStatus
from iyield_ingest.sheets.remote import RemoteCaller
from iyield_ingest.sheets.sync import SyncOrchestrator, chunk_rows_by_cell_budget, destination_name


class TestDestinationName:
    def test_relative_path_joined(self, tmp_path):
        path = tmp_path / "A" / "prices.csv"
        assert destination_name(path, [tmp_path]) == "DATA_A_prices"

    def test_leading_output_directory_dropped(self, tmp_path):
        assert destination_name(tmp_path / "data" / "A" / "prices.csv", [tmp_path]) == "DATA_A_prices"
        assert destination_name(tmp_path / "macro" / "fred_DGS10.csv", [tmp_path]) == "DATA_fred_DGS10"

    def test_output_directory_kept_when_it_is_the_file(self, tmp_path):
        assert destination_name(tmp_path / "data.csv", [tmp_path]) == "DATA_data"

    def test_unsafe_characters_replaced(self, tmp_path):
        path = tmp_path / "BTC USD" / "price$(1).csv"
        assert destination_name(path, [tmp_path]) == "DATA_BTC_USD_price__1_"

    def test_dots_and_dashes_survive(self, tmp_path):
        path = tmp_path / "x-y" / "v1.2.csv"
        assert destination_name(path, [tmp_path]) == "DATA_x-y_v1.2"

    def test_uppercase_suffix_removed(self, tmp_path):
        assert destination_name(tmp_path / "A" / "P.CSV", [tmp_path]) == "DATA_A_P"

    def test_name_capped(self, tmp_path):
        path = tmp_path / ("x" * 150 + ".csv")
        name = destination_name(path, [tmp_path], max_length=90)
        assert name == "DATA_" + "x" * 90

    def test_empty_name_falls_back(self, tmp_path):
        assert destination_name(tmp_path / ".csv", [tmp_path]) == "DATA_Sheet"

    def test_first_matching_root_wins(self, tmp_path):
        inner = tmp_path / "data"
        path = inner / "B" / "tvl.csv"
        assert destination_name(path, [inner, tmp_path]) == "DATA_B_tvl"

    def test_custom_prefix(self, tmp_path):
        assert destination_name(tmp_path / "A.csv", [tmp_path], prefix="GEN_") == "GEN_A"


class TestChunking:
    def test_tiles_rows_exactly(self):
        rows = [[str(i)] * 5 for i in range(10_000)]
        chunks = chunk_rows_by_cell_budget(rows, 40_000)

        assert [(start, len(chunk)) for start, chunk in chunks] == [(1, 8000), (8001, 2000)]
        assert [row for _, chunk in chunks for row in chunk] == rows
        assert all(len(chunk) * 5 <= 40_000 for _, chunk in chunks)

    def test_row_wider_than_budget_gets_own_chunk(self):
        rows = [["x"] * 10, ["y"] * 10]
        chunks = chunk_rows_by_cell_budget(rows, 4)
        assert [start for start, _ in chunks] == [1, 2]

    def test_empty(self):
        assert chunk_rows_by_cell_budget([], 10) == []


@pytest.fixture
def data_root(settings, tmp_path):
    root = tmp_path / "data"
    root.mkdir()
    return root


def orchestrator_for(store, settings, caller):
    return SyncOrchestrator(store, settings, caller=caller)


@pytest.mark.asyncio
async def test_single_file_creates_tab_with_content(store, settings, caller, data_root):
    write_file(data_root / "A" / "prices.csv", "date,close\n2024-01-01,1\n2024-01-02,2")

    summary = await orchestrator_for(store, settings, caller).run()

    assert [o.status for o in summary.outcomes] == [OutcomeStatus.SUCCESS]
    assert summary.outcomes[0].target == "DATA_A_prices"
    assert store.content("DATA_A_prices") == [
        ["date", "close"],
        ["2024-01-01", "1"],
        ["2024-01-02", "2"],
    ]
    handle = store.by_title("DATA_A_prices")
    assert handle.rows >= 3 + 200
    assert store.calls_of("clear_values") == [("clear_values", "DATA_A_prices")]
    assert "Sheet1" in {h.title for h in store.sheets.values()}


@pytest.mark.asyncio
async def test_large_file_is_written_in_budgeted_chunks(store, settings, caller, data_root):
    header = "c1,c2,c3,c4,c5"
    body = "\n".join(",".join([str(i)] * 5) for i in range(9_999))
    write_file(data_root / "big.csv", f"{header}\n{body}")

    await orchestrator_for(store, settings, caller).run()

    updates = store.calls_of("update_values")
    assert [(start, count) for _, _, start, count in updates] == [(1, 8000), (8001, 2000)]
    assert all(count * 5 <= settings.sheets_max_cells for _, _, _, count in updates)
    assert store.calls_of("resize_sheet") == [("resize_sheet", "DATA_big", 10_200, 26)]
    content = store.content("DATA_big")
    assert len(content) == 10_000
    assert content[-1] == ["9998"] * 5


@pytest.mark.asyncio
async def test_one_malformed_file_does_not_stop_the_pass(store, settings, caller, data_root):
    for name in ("a", "b", "d", "e"):
        write_file(data_root / f"{name}.csv", "date,v\n2024-01-01,1")
    (data_root / "c.csv").write_bytes(b"date,v\n\xff\xfe,1")

    with capture_logs() as logs:
        summary = await orchestrator_for(store, settings, caller).run()

    assert len(summary.succeeded) == 4
    assert len(summary.failed) == 1
    assert summary.failed[0].item.endswith("c.csv")
    failures = [entry for entry in logs if entry["event"] == "Failed sync"]
    assert len(failures) == 1
    assert failures[0]["log_level"] == "warning"
    assert failures[0]["error_type"] == "UnicodeDecodeError"


@pytest.mark.asyncio
async def test_row_wider_than_header_fails_that_file(store, settings, caller, data_root):
    write_file(data_root / "ok.csv", "a,b\n1,2")
    write_file(data_root / "wide.csv", "a,b\n1,2,3")

    summary = await orchestrator_for(store, settings, caller).run()

    assert [o.target for o in summary.succeeded] == ["DATA_ok"]
    assert "Row 2" in summary.failed[0].detail


@pytest.mark.asyncio
async def test_short_rows_are_padded(store, settings, caller, data_root):
    write_file(data_root / "short.csv", "a,b,c\n1")

    await orchestrator_for(store, settings, caller).run()

    assert store.content("DATA_short") == [["a", "b", "c"], ["1", "", ""]]


@pytest.mark.asyncio
async def test_second_pass_gives_same_result(store, settings, caller, data_root):
    write_file(data_root / "A" / "prices.csv", "date,close\n2024-01-01,1")
    write_file(data_root / "B.csv", "date,tvl\n2024-01-01,5")

    await orchestrator_for(store, settings, caller).run()
    first = {title: store.content(title) for title in ("DATA_A_prices", "DATA_B")}
    await orchestrator_for(store, settings, caller).run()
    second = {title: store.content(title) for title in ("DATA_A_prices", "DATA_B")}

    assert first == second
    assert sorted(h.title for h in store.sheets.values()) == ["DATA_A_prices", "DATA_B", "Sheet1"]


@pytest.mark.asyncio
async def test_stale_generated_tabs_removed_and_user_tabs_kept(settings, caller, data_root):
    store = FakeSheetStore(["Sheet1", "Notes", "DATA_old_file"])
    write_file(data_root / "new.csv", "a\n1")

    await orchestrator_for(store, settings, caller).run()

    assert sorted(h.title for h in store.sheets.values()) == ["DATA_new", "Notes", "Sheet1"]
    assert len(store.calls_of("delete_sheets")) == 1


@pytest.mark.asyncio
async def test_rate_limit_waits_for_retry_after(store, settings, caller, sleeps, data_root):
    write_file(data_root / "a.csv", "a\n1")
    store.fail("update_values", StoreError("Quota exceeded", status=429, retry_after=2))

    summary = await orchestrator_for(store, settings, caller).run()

    assert len(summary.succeeded) == 1
    assert sleeps.delays and sleeps.delays[0] >= 2.0
    assert len(store.calls_of("update_values")) == 2


@pytest.mark.asyncio
async def test_rate_limit_reason_without_status_is_retried(store, settings, caller, sleeps, data_root):
    write_file(data_root / "a.csv", "a\n1")
    store.fail("clear_values", StoreError("slow down", status=403, reason="userRateLimitExceeded"))

    summary = await orchestrator_for(store, settings, caller).run()

    assert len(summary.succeeded) == 1
    assert len(sleeps.delays) == 1


@pytest.mark.asyncio
async def test_other_store_errors_fail_the_file_without_retry(store, settings, caller, sleeps, data_root):
    write_file(data_root / "a.csv", "a\n1")
    store.fail("clear_values", StoreError("bad request", status=400))

    summary = await orchestrator_for(store, settings, caller).run()

    assert len(summary.failed) == 1
    assert sleeps.delays == []


@pytest.mark.asyncio
async def test_listing_failure_aborts_pass(store, settings, caller, data_root):
    write_file(data_root / "a.csv", "a\n1")
    store.fail("list_sheets", StoreError("backend error", status=500))

    with pytest.raises(StoreError, match="backend error"):
        await orchestrator_for(store, settings, caller).run()
    assert store.calls_of("add_sheet") == []


@pytest.mark.asyncio
async def test_empty_file_is_skipped(store, settings, caller, data_root):
    write_file(data_root / "empty.csv", "")
    write_file(data_root / "full.csv", "a\n1")

    with capture_logs() as logs:
        summary = await orchestrator_for(store, settings, caller).run()

    assert [o.status for o in summary.outcomes] == [OutcomeStatus.SKIPPED, OutcomeStatus.SUCCESS]
    assert "DATA_empty" not in {h.title for h in store.sheets.values()}
    assert any(entry["event"] == "Skip empty CSV" for entry in logs)


@pytest.mark.asyncio
async def test_no_files_means_no_store_calls(store, settings, caller, data_root):
    write_file(data_root / "notes.txt", "not tabular")

    summary = await orchestrator_for(store, settings, caller).run()

    assert summary.outcomes == []
    assert store.calls == []


@pytest.mark.asyncio
async def test_missing_root_is_ignored(store, settings, caller, tmp_path):
    summary = await orchestrator_for(store, settings, caller).run()
    assert summary.outcomes == []
    assert store.calls == []


@pytest.mark.asyncio
async def test_autofit_failure_still_counts_as_success(store, settings, caller, data_root):
    write_file(data_root / "a.csv", "a,b\n1,2")
    store.fail("auto_resize_columns", StoreError("invalid range", status=400))

    summary = await orchestrator_for(store, settings, caller).run()

    assert len(summary.succeeded) == 1
    assert store.calls_of("auto_resize_columns") == [("auto_resize_columns", "DATA_a", 0, 3)]


@pytest.mark.asyncio
async def test_autofit_transport_failure_still_counts_as_success(store, settings, caller, data_root):
    write_file(data_root / "a.csv", "a,b\n1,2")
    store.fail("auto_resize_columns", TimeoutError("The read operation timed out"))

    with capture_logs() as logs:
        summary = await orchestrator_for(store, settings, caller).run()

    assert [o.status for o in summary.outcomes] == [OutcomeStatus.SUCCESS]
    assert store.content("DATA_a") == [["a", "b"], ["1", "2"]]
    autofit = [entry for entry in logs if entry["event"] == "Column auto-fit failed"]
    assert autofit[0]["error_type"] == "TimeoutError"
    assert not any(entry["event"] == "Failed sync" for entry in logs)


@pytest.mark.asyncio
async def test_autofit_range_is_capped(store, settings, caller, data_root):
    header = ",".join(f"c{i}" for i in range(60))
    write_file(data_root / "wide.csv", header)

    await orchestrator_for(store, settings, caller).run()

    assert store.calls_of("auto_resize_columns") == [("auto_resize_columns", "DATA_wide", 0, 50)]


@pytest.mark.asyncio
async def test_every_successful_call_is_throttled(store, settings, sleeps, data_root):
    throttled = settings.model_copy(update={"sheets_throttle_ms": 1200})
    caller = RemoteCaller.from_settings(throttled, sleep=sleeps)
    write_file(data_root / "a.csv", "a\n1")

    await SyncOrchestrator(store, throttled, caller=caller).run()

    assert caller.call_count == len(store.calls)
    assert sleeps.delays == [1.2] * caller.call_count

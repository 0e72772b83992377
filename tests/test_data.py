import pandas as pd
import pytest
import requests

from exps.predictors.src.wlepred import data
from exps.predictors.src.wlepred.errors import SourceUnavailable


CSV_TEXT = (
    "X,user_name,kurtosis_roll_belt,roll_belt,note,classe\n"
    "1,carlitos,,1.41,N/A,A\n"
    "2,pedro,#DIV/0!,1.42,nan,B\n"
    "3,NA,5.1,NA,ok,C\n"
)


class FakeResponse:
    def __init__(self, content: bytes = b"", status: int = 200):
        self._content = content
        self.status_code = status

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def iter_content(self, chunk_size=1):
        yield self._content


@pytest.fixture
def no_sleep(monkeypatch):
    monkeypatch.setattr(data.time, "sleep", lambda seconds: None)


def test_missing_markers_become_nan(logger, tmp_path):
    path = tmp_path / "train.csv"
    path.write_text(CSV_TEXT)
    df = data.load_dataset(logger, path, "Training")

    assert df.shape == (3, 6)
    assert df["kurtosis_roll_belt"].isna().tolist() == [True, True, False]
    assert df["kurtosis_roll_belt"].iloc[2] == pytest.approx(5.1)
    assert df["roll_belt"].isna().tolist() == [False, False, True]
    assert pd.isna(df.loc[2, "user_name"])
    # only the three configured markers count as missing
    assert df["note"].tolist() == ["N/A", "nan", "ok"]


def test_cached_copy_is_used(logger, tmp_path, monkeypatch):
    cached = tmp_path / "pml-training.csv"
    cached.write_text(CSV_TEXT)

    def fail(*args, **kwargs):
        raise AssertionError("network must not be used when a cached copy exists")
    monkeypatch.setattr(data.requests, "get", fail)

    assert data.fetch_dataset(logger, "https://example.invalid/train.csv", cached) == cached


def test_download_is_cached(logger, tmp_path, monkeypatch):
    calls = []

    def fake_get(url, stream=False, timeout=None):
        calls.append(url)
        return FakeResponse(CSV_TEXT.encode())
    monkeypatch.setattr(data.requests, "get", fake_get)

    target = tmp_path / "cache" / "pml-training.csv"
    path = data.fetch_dataset(logger, "https://example.invalid/train.csv", target)

    assert path == target
    assert target.read_text() == CSV_TEXT
    assert calls == ["https://example.invalid/train.csv"]

    # second call is served from the cache
    data.fetch_dataset(logger, "https://example.invalid/train.csv", target)
    assert len(calls) == 1


def test_download_retries_then_succeeds(logger, tmp_path, monkeypatch, no_sleep):
    responses = iter([FakeResponse(status=503), FakeResponse(CSV_TEXT.encode())])
    monkeypatch.setattr(data.requests, "get", lambda url, stream=False, timeout=None: next(responses))

    path = data.fetch_dataset(logger, "https://example.invalid/train.csv", tmp_path / "t.csv", retries=3)
    assert path.read_text() == CSV_TEXT


def test_unreachable_source(logger, tmp_path, monkeypatch, no_sleep):
    calls = []

    def fake_get(url, stream=False, timeout=None):
        calls.append(url)
        raise requests.ConnectionError("unreachable")
    monkeypatch.setattr(data.requests, "get", fake_get)

    with pytest.raises(SourceUnavailable) as exc_info:
        data.fetch_dataset(logger, "https://example.invalid/train.csv", tmp_path / "t.csv", retries=3)
    assert len(calls) == 3
    assert exc_info.value.table == "t.csv"
    assert isinstance(exc_info.value, FileNotFoundError)


class BrokenStream(FakeResponse):
    """Response whose body fails after the first chunk."""

    def __init__(self, error):
        super().__init__(b"X,classe\n1,A\n")
        self._error = error

    def iter_content(self, chunk_size=1):
        yield self._content
        raise self._error


@pytest.mark.parametrize("error", [requests.ConnectionError("reset by peer"), OSError("disk full")])
def test_interrupted_downloads_leave_no_partial_files(logger, tmp_path, monkeypatch, no_sleep, error):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(data.tempfile, "tempdir", str(scratch))
    monkeypatch.setattr(data.requests, "get", lambda url, stream=False, timeout=None: BrokenStream(error))

    with pytest.raises(SourceUnavailable):
        data.fetch_dataset(logger, "https://example.invalid/train.csv", tmp_path / "cache" / "t.csv", retries=2)

    assert list(scratch.iterdir()) == []
    assert not (tmp_path / "cache" / "t.csv").exists()


def test_partial_download_then_success(logger, tmp_path, monkeypatch, no_sleep):
    scratch = tmp_path / "scratch"
    scratch.mkdir()
    monkeypatch.setattr(data.tempfile, "tempdir", str(scratch))
    responses = iter([BrokenStream(requests.ConnectionError("reset")), FakeResponse(CSV_TEXT.encode())])
    monkeypatch.setattr(data.requests, "get", lambda url, stream=False, timeout=None: next(responses))

    target = tmp_path / "cache" / "t.csv"
    assert data.fetch_dataset(logger, "https://example.invalid/train.csv", target, retries=2) == target
    assert target.read_text() == CSV_TEXT
    assert list(scratch.iterdir()) == []


def test_no_cache_and_no_url(logger, tmp_path):
    with pytest.raises(SourceUnavailable):
        data.fetch_dataset(logger, None, tmp_path / "t.csv")


def test_load_missing_file(logger, tmp_path):
    with pytest.raises(SourceUnavailable):
        data.load_dataset(logger, tmp_path / "absent.csv", "Training")


def test_load_datasets_from_cache(logger, tmp_path, training_df, scoring_df):
    training_df.to_csv(tmp_path / "pml-training.csv", index=False)
    scoring_df.to_csv(tmp_path / "pml-testing.csv", index=False)

    df_training, df_scoring = data.load_datasets(logger, {"training_url": None, "scoring_url": None}, tmp_path)

    assert df_training.shape == training_df.shape
    assert df_scoring.shape == scoring_df.shape
    assert "problem_id" in df_scoring.columns

"""
Unit tests for data writers
"""

import pytest
import pandas as pd
from datetime import datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock, patch

from market_history_downloader.config import OutputConfig
from market_history_downloader.models import Resolution, TradeBar
from market_history_downloader.storage.data_writer import (
    GCSDataWriter, LocalDataWriter, create_writer, gcs_prefix, partition_frame, to_dataframe,
)
from market_history_downloader.utils.error_handler import StorageError


def _bars(symbol, start, count, period):
    return [
        TradeBar(
            time=start + i * period, symbol=symbol,
            open=Decimal("100.5"), high=Decimal("101"), low=Decimal("100"), close=Decimal("100.75"),
            volume=Decimal(1000), period=period,
        )
        for i in range(count)
    ]


class TestPartitioning:
    """Test output layout"""

    def test_intraday_split_per_day(self, spy, make_ticks):
        ticks = make_ticks([1.0, 2.0, 3.0], start=datetime(2024, 1, 2, 15, 0), spacing=timedelta(hours=5))
        partitions = partition_frame(to_dataframe(ticks), spy, Resolution.TICK, 'parquet')

        assert list(partitions) == [
            "equity/usa/tick/spy/20240102.parquet",
            "equity/usa/tick/spy/20240103.parquet",
        ]
        assert len(partitions["equity/usa/tick/spy/20240102.parquet"]) == 2

    def test_daily_single_file(self, spy):
        bars = _bars(spy, datetime(2024, 1, 2), 3, timedelta(days=1))
        partitions = partition_frame(to_dataframe(bars), spy, Resolution.DAILY, 'csv')
        assert list(partitions) == ["equity/usa/daily/spy.csv"]

    def test_decimals_stored_as_float(self, spy):
        df = to_dataframe(_bars(spy, datetime(2024, 1, 2), 1, timedelta(days=1)))
        assert df['close'].dtype == 'float64'
        assert df['close'].iloc[0] == 100.75


class TestLocalDataWriter:
    """Test LocalDataWriter class"""

    def test_write_parquet(self, spy, tmp_path):
        writer = LocalDataWriter(str(tmp_path))
        bars = _bars(spy, datetime(2024, 1, 2, 9, 30), 390, timedelta(minutes=1))

        paths = writer.write(spy, Resolution.MINUTE, bars)

        assert paths == [str(tmp_path / "equity/usa/minute/spy/20240102.parquet")]
        df = pd.read_parquet(paths[0])
        assert len(df) == 390
        assert list(df.columns) == ['time', 'end_time', 'open', 'high', 'low', 'close', 'volume']
        assert not list(tmp_path.rglob("*.tmp"))

    def test_write_csv(self, spy, tmp_path):
        writer = LocalDataWriter(str(tmp_path), file_format='csv')
        paths = writer.write(spy, Resolution.HOUR, _bars(spy, datetime(2024, 1, 2, 9), 7, timedelta(hours=1)))
        assert paths == [str(tmp_path / "equity/usa/hour/spy.csv")]
        assert len(pd.read_csv(paths[0])) == 7

    def test_empty_data_writes_nothing(self, spy, tmp_path):
        assert LocalDataWriter(str(tmp_path)).write(spy, Resolution.DAILY, []) == []
        assert list(tmp_path.iterdir()) == []

    def test_failure_leaves_no_files(self, spy, tmp_path, make_ticks):
        """Test a failed partition removes the staged files of its siblings"""
        writer = LocalDataWriter(str(tmp_path), file_format='csv')
        ticks = make_ticks([1.0, 2.0], start=datetime(2024, 1, 2, 15, 0), spacing=timedelta(days=1))
        calls = []

        def serialize(df, path):
            calls.append(path)
            if len(calls) == 2:
                raise OSError("disk full")
            df.to_csv(path, index=False)

        with patch.object(writer, '_serialize', side_effect=serialize):
            with pytest.raises(StorageError, match="disk full"):
                writer.write(spy, Resolution.TICK, ticks)

        assert [p for p in tmp_path.rglob("*") if p.is_file()] == []


class TestGCSDataWriter:
    """Test GCSDataWriter class"""

    def test_upload(self, spy, mock_gcs_client):
        client, bucket = mock_gcs_client
        writer = GCSDataWriter("test-bucket", prefix="history", client=client)

        uris = writer.write(spy, Resolution.DAILY, _bars(spy, datetime(2024, 1, 2), 2, timedelta(days=1)))

        assert uris == ["gs://test-bucket/history/equity/usa/daily/spy.parquet"]
        bucket.blob.assert_called_once_with("history/equity/usa/daily/spy.parquet")
        bucket.blob.return_value.upload_from_filename.assert_called_once()

    def test_upload_failure(self, spy, mock_gcs_client):
        client, bucket = mock_gcs_client
        bucket.blob.return_value.upload_from_filename.side_effect = RuntimeError("403 Forbidden")
        writer = GCSDataWriter("test-bucket", client=client)

        with pytest.raises(StorageError, match="403"):
            writer.write(spy, Resolution.DAILY, _bars(spy, datetime(2024, 1, 2), 1, timedelta(days=1)))


class TestCreateWriter:
    """Test writer factory"""

    def test_local(self, tmp_path):
        writer = create_writer(OutputConfig(data_folder=str(tmp_path), format='csv'))
        assert isinstance(writer, LocalDataWriter)
        assert writer.file_format == 'csv'

    def test_gcs(self):
        with patch('market_history_downloader.storage.data_writer.storage.Client') as client_cls:
            writer = create_writer(OutputConfig(destination='gcs', gcs_bucket='test-bucket', data_folder='data'))
        assert isinstance(writer, GCSDataWriter)
        assert writer.prefix == 'data'
        client_cls.return_value.bucket.assert_called_once_with('test-bucket')


class TestGcsPrefix:
    """Test bucket prefix normalization"""

    @pytest.mark.parametrize("data_folder, expected", [
        ("data", "data"),
        ("./data", "data"),
        ("./data.", "data."),
        ("/srv/history/", "srv/history"),
        ("../exports/./daily", "exports/daily"),
        (".", ""),
    ])
    def test_normalized(self, data_folder, expected):
        assert gcs_prefix(data_folder) == expected

    def test_factory_uses_normalized_prefix(self):
        with patch('market_history_downloader.storage.data_writer.storage.Client'):
            writer = create_writer(OutputConfig(destination='gcs', gcs_bucket='test-bucket', data_folder='./data.'))
        assert writer.prefix == 'data.'

"""
Data Writers

Persist the tick/bar sequence of one (symbol, resolution) pair. Intraday
resolutions (tick, second, minute) are partitioned into one file per day;
hour and daily data go to a single file per symbol:

    {security_type}/{market}/{resolution}/{ticker}/{yyyymmdd}.{ext}
    {security_type}/{market}/{resolution}/{ticker}.{ext}
"""

import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Optional

import pandas as pd
from google.cloud import storage

from ..models import BaseData, Resolution, Symbol
from ..utils.error_handler import StorageError
from ..utils.logger import log_data_processing

logger = logging.getLogger(__name__)

DAILY_PARTITIONED = {Resolution.TICK, Resolution.SECOND, Resolution.MINUTE}
PRICE_COLUMNS = ['last_price', 'bid_price', 'ask_price', 'quantity', 'open', 'high', 'low', 'close', 'volume']


def to_dataframe(data: Iterable[BaseData]) -> pd.DataFrame:
    """Convert ticks or bars to a DataFrame with float price/volume columns"""
    df = pd.DataFrame([item.model_dump() for item in data])
    for column in PRICE_COLUMNS:
        if column in df.columns:
            df[column] = df[column].astype('float64')
    return df


def partition_frame(df: pd.DataFrame, symbol: Symbol, resolution: Resolution, extension: str) -> Dict[str, pd.DataFrame]:
    """Relative output path -> rows stored at that path"""
    base = f"{symbol.security_type.value}/{symbol.market.value}/{resolution.value}"
    name = symbol.ticker.lower().replace('/', '_')

    if resolution not in DAILY_PARTITIONED:
        return {f"{base}/{name}.{extension}": df}

    partitions = {}
    for day, rows in df.groupby(df['time'].dt.date, sort=True):
        partitions[f"{base}/{name}/{day:%Y%m%d}.{extension}"] = rows.reset_index(drop=True)
    return partitions


class DataWriter(ABC):
    """Writer sink for one symbol/resolution sequence; all-or-nothing from the caller's view"""

    def __init__(self, file_format: str = "parquet", compression: str = "snappy"):
        self.file_format = file_format
        self.compression = compression

    def write(self, symbol: Symbol, resolution: Resolution, data: Iterable[BaseData]) -> List[str]:
        """Persist data and return the written locations"""
        df = to_dataframe(data)
        if df.empty:
            logger.warning(f"⚠️ No {resolution.value} data to write for {symbol}")
            return []

        partitions = partition_frame(df, symbol, resolution, self.file_format)
        try:
            written = self._write_partitions(partitions)
        except StorageError:
            raise
        except Exception as e:
            raise StorageError(f"Failed to write {resolution.value} data for {symbol}: {e}") from e

        log_data_processing(logger, f"write {resolution.value}", len(df),
                            symbol=str(symbol), files=len(written))
        return written

    def _serialize(self, df: pd.DataFrame, path: str):
        if self.file_format == 'parquet':
            df.to_parquet(path, index=False, compression=self.compression)
        else:
            df.to_csv(path, index=False)

    @abstractmethod
    def _write_partitions(self, partitions: Dict[str, pd.DataFrame]) -> List[str]:
        ...


class LocalDataWriter(DataWriter):
    """Writes partitions under data_folder, renaming temp files into place once all succeed"""

    def __init__(self, data_folder: str, file_format: str = "parquet", compression: str = "snappy"):
        super().__init__(file_format, compression)
        self.data_folder = Path(data_folder)

    def _write_partitions(self, partitions: Dict[str, pd.DataFrame]) -> List[str]:
        staged = []
        try:
            for relative_path, rows in partitions.items():
                target = self.data_folder / relative_path
                target.parent.mkdir(parents=True, exist_ok=True)
                temp_path = target.with_name(target.name + '.tmp')
                staged.append((temp_path, target))
                self._serialize(rows, str(temp_path))
        except Exception:
            for temp_path, _ in staged:
                try:
                    temp_path.unlink()
                except FileNotFoundError:
                    pass
                except OSError as e:
                    logger.warning(f"⚠️ Could not remove staged file {temp_path}: {e}")
            raise

        for temp_path, target in staged:
            os.replace(temp_path, target)
        return [str(target) for _, target in staged]


class GCSDataWriter(DataWriter):
    """Uploads partitions to a Google Cloud Storage bucket under an optional prefix"""

    def __init__(self, bucket_name: str, prefix: str = "", file_format: str = "parquet",
                 compression: str = "snappy", client: Optional[storage.Client] = None):
        super().__init__(file_format, compression)
        self.bucket_name = bucket_name
        self.prefix = prefix.strip('/')
        self.client = client or storage.Client()
        self.bucket = self.client.bucket(bucket_name)

    def _write_partitions(self, partitions: Dict[str, pd.DataFrame]) -> List[str]:
        uploaded = []
        for relative_path, rows in partitions.items():
            blob_name = f"{self.prefix}/{relative_path}" if self.prefix else relative_path
            blob = self.bucket.blob(blob_name)

            with tempfile.NamedTemporaryFile(suffix=f'.{self.file_format}') as tmp_file:
                self._serialize(rows, tmp_file.name)
                blob.upload_from_filename(tmp_file.name)

            uri = f"gs://{self.bucket_name}/{blob_name}"
            logger.info(f"📤 Uploaded {uri}")
            uploaded.append(uri)
        return uploaded


def gcs_prefix(data_folder: str) -> str:
    """Bucket prefix for a local-style data folder: '.', '..' and root parts dropped"""
    parts = PurePosixPath(data_folder.replace('\\', '/')).parts
    return '/'.join(part for part in parts if part not in ('/', '.', '..'))


def create_writer(output_config) -> DataWriter:
    """Writer for the configured destination"""
    if output_config.destination == 'gcs':
        return GCSDataWriter(
            bucket_name=output_config.gcs_bucket,
            prefix=gcs_prefix(output_config.data_folder),
            file_format=output_config.format,
            compression=output_config.compression
        )
    return LocalDataWriter(
        data_folder=output_config.data_folder,
        file_format=output_config.format,
        compression=output_config.compression
    )

"""
pulsebeats - Band Energy Extractor
Turns decoded mono audio into per-band energy feature samples, one per
buffer, the way a real-time analyser callback would deliver them.
"""

from typing import Iterator, Optional

import numpy as np
from scipy.signal import butter, sosfilt, sosfilt_zi

from band_dispatcher import FeatureSample
from config import AudioConfig, BandId
from errors import InvalidConfiguration
from logging_utils import log_event


def _normalized(freq_hz: float, nyquist: float) -> float:
    return max(0.001, min(0.999, freq_hz / nyquist))


class BandEnergyExtractor:
    def __init__(self, audio_config: AudioConfig):
        if audio_config.sample_rate <= 0 or audio_config.buffer_size <= 0:
            raise InvalidConfiguration(
                f"sample_rate and buffer_size must be positive, got "
                f"{audio_config.sample_rate}/{audio_config.buffer_size}")
        self.config = audio_config
        self.block_duration_s = audio_config.buffer_size / audio_config.sample_rate
        self._sos: dict[BandId, Optional[np.ndarray]] = self._design_filters()
        self._zi: dict[BandId, Optional[np.ndarray]] = {band: None for band in BandId}

    def _design_filters(self) -> dict:
        cfg = self.config
        nyquist = cfg.sample_rate / 2.0

        bass = butter(cfg.filter_order, _normalized(cfg.bass_cutoff_hz, nyquist),
                      btype='lowpass', output='sos')

        bandwidth = cfg.mids_center_hz / max(cfg.mids_q, 1e-6)
        low = _normalized(cfg.mids_center_hz - bandwidth / 2.0, nyquist)
        high = _normalized(cfg.mids_center_hz + bandwidth / 2.0, nyquist)
        if high <= low:
            raise InvalidConfiguration(f"mids band is empty: {cfg.mids_center_hz} Hz, Q={cfg.mids_q}")
        mids = butter(cfg.filter_order, [low, high], btype='bandpass', output='sos')

        log_event("INFO", "Features", "Band filters initialized",
                  bass_cutoff=f"{cfg.bass_cutoff_hz:.0f}",
                  mids_low=f"{low * nyquist:.0f}", mids_high=f"{high * nyquist:.0f}")
        return {BandId.BASS: bass, BandId.MIDS: mids, BandId.OVERALL: None}

    def _filter(self, band: BandId, block: np.ndarray) -> np.ndarray:
        sos = self._sos[band]
        if sos is None:
            return block
        zi = self._zi[band]
        if zi is None:
            # Start the filter settled at the first sample to avoid a step transient
            zi = sosfilt_zi(sos) * block[0]
        filtered, self._zi[band] = sosfilt(sos, block, zi=zi)
        return filtered

    def process_block(self, block: np.ndarray, timestamp: float) -> list[FeatureSample]:
        """Energy (sum of squares) of one mono block, per band."""
        block = np.asarray(block, dtype=np.float64)
        if block.ndim > 1:
            block = np.mean(block, axis=1)
        if block.size == 0:
            return []
        return [
            FeatureSample(band=band, value=float(np.sum(np.square(self._filter(band, block)))),
                          timestamp=timestamp)
            for band in BandId
        ]

    def iter_feature_samples(self, signal: np.ndarray, start_time: float = 0.0) -> Iterator[list[FeatureSample]]:
        """Slice ``signal`` into buffer-sized blocks and yield the samples of each block.

        Block ``i`` is stamped at the time it would finish playing. A trailing
        partial block is dropped, as an analyser only fires on full buffers.
        """
        signal = np.asarray(signal, dtype=np.float64)
        size = self.config.buffer_size
        for i in range(len(signal) // size):
            block = signal[i * size:(i + 1) * size]
            yield self.process_block(block, start_time + (i + 1) * self.block_duration_s)

    def reset(self) -> None:
        self._zi = {band: None for band in BandId}

"""
Tests for the logging module.
"""

import pytest

from meeting_sync.logging import (
    PipelineTimer,
    add_context_info,
    get_origin_id,
    get_run_id,
    get_target_id,
    logging_context,
)


class TestLoggingContext:
    """Test logging context management."""

    def test_logging_context_sets_values(self):
        with logging_context(run_id='run-1', origin_id='m1', target_id='t1'):
            assert get_run_id() == 'run-1'
            assert get_origin_id() == 'm1'
            assert get_target_id() == 't1'

    def test_logging_context_restores_values(self):
        with logging_context(run_id='outer'):
            with logging_context(origin_id='m1'):
                assert get_run_id() == 'outer'
                assert get_origin_id() == 'm1'
            assert get_origin_id() is None
            assert get_run_id() == 'outer'
        assert get_run_id() is None

    def test_context_processor_adds_ids(self):
        with logging_context(run_id='run-9', origin_id='m9'):
            event = add_context_info(None, 'info', {'event': 'x'})
        assert event['run_id'] == 'run-9'
        assert event['origin_id'] == 'm9'
        assert 'target_id' not in event

    def test_context_processor_keeps_explicit_fields(self):
        with logging_context(target_id='ctx'):
            event = add_context_info(None, 'info', {'event': 'x', 'target_id': 'explicit'})
        assert event['target_id'] == 'explicit'


class TestPipelineTimer:
    """Test pipeline timing functionality."""

    def test_timer_records_stages(self):
        timer = PipelineTimer()
        with timer.stage('extraction'):
            pass
        with timer.stage('indexing'):
            pass
        assert set(timer.stages) == {'extraction', 'indexing'}
        assert all(v >= 0 for v in timer.stages.values())

    def test_repeated_stage_accumulates(self):
        timer = PipelineTimer()
        timer.record('upsert', 5.0)
        with timer.stage('upsert'):
            pass
        assert timer.stages['upsert'] >= 5.0

    def test_stage_recorded_on_exception(self):
        timer = PipelineTimer()
        with pytest.raises(RuntimeError):
            with timer.stage('boom'):
                raise RuntimeError('x')
        assert 'boom' in timer.stages

    def test_summary(self):
        timer = PipelineTimer()
        timer.record('a', 1.234)
        summary = timer.summary()
        assert summary['stages'] == {'a': 1.23}
        assert summary['total_ms'] >= 0

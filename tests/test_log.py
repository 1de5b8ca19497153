# tests/test_log.py
"""
Tests for ETracker.log.log
(covers TankHandler, Qt bridge and setup helpers).

Run:
    python -m unittest tests.test_log
"""
import logging
from typing import List

from PySide6.QtCore import QtMsgType

from ETracker.core.signals import signals
from ETracker.log.log import (
    TankHandler,
    get_tank_handler,
    qt_message_handler,
    set_logging_level,
    setup_logging,
)
from tests.base import BaseTestCase, capture


class LogModuleTests(BaseTestCase):
    """
    Each test starts with a fresh root logger configured by
    setup_logging(enable_stream_handler=False).
    """

    def setUp(self) -> None:
        super().setUp()

        logging.disable(logging.NOTSET)

        setup_logging(enable_stream_handler=False,
                      enable_qt_handler=False,
                      log_level=logging.DEBUG)

        self.root_logger = logging.getLogger()
        self.tank: TankHandler = get_tank_handler()

    def tearDown(self) -> None:
        setup_logging(enable_qt_handler=False)
        super().tearDown()

    def test_setup_logging_installs_tank_handler_only(self):
        self.assertEqual(
            [type(h) for h in self.root_logger.handlers],
            [TankHandler],
        )
        self.assertIs(self.tank, self.root_logger.handlers[0])

    def test_tank_handler_stores_and_filters(self):
        logging.debug('dbg message')
        logging.error('err message')
        self.assertEqual(len(self.tank.tank), 2)
        errs: List[str] = self.tank.get_logs(logging.ERROR)
        self.assertEqual(len(errs), 1)
        self.assertIn('err message', errs[0])
        self.tank.clear_logs()
        self.assertEqual(len(self.tank.tank), 0)

    def test_records_use_application_format(self):
        logging.info('formatted')
        message = self.tank.get_logs()[-1]
        self.assertRegex(message, r'^\[\d{4}-\d{2}-\d{2} \d{2}:\d{2}:\d{2}\] <test_log> INFO:  formatted$')

    def test_emit_triggers_showLogs_on_error(self):
        with capture(signals.showLogs) as shown:
            logging.warning('only a warning')
            self.assertEqual(shown, [])
            logging.error('should emit signal')
        self.assertEqual(len(shown), 1)

    def test_store_errors_reach_the_tank(self):
        from ETracker.status import status
        with self.assertRaises(status.NotFoundException):
            self.store.transactions.get_transaction(42)
        self.assertTrue(any('42' in m for m in self.tank.get_logs(logging.ERROR)))

    def test_set_logging_level_accepts_valid_levels(self):
        set_logging_level(logging.ERROR)
        self.assertEqual(self.root_logger.level, logging.ERROR)
        for h in self.root_logger.handlers:
            self.assertEqual(h.level, logging.ERROR)

        logging.info('filtered out')
        self.assertFalse(any('filtered out' in m for m in self.tank.get_logs()))

    def test_set_logging_level_rejects_non_int(self):
        with self.assertRaises(ValueError):
            set_logging_level('INFO')  # type: ignore[arg-type]
        with self.assertRaises(ValueError):
            set_logging_level(True)

    def test_set_logging_level_rejects_unknown(self):
        with self.assertRaises(ValueError):
            set_logging_level(1234)

    def test_qt_message_handler_maps_to_logging(self):
        qt_message_handler(QtMsgType.QtInfoMsg, None, 'Qt info')
        qt_message_handler(QtMsgType.QtWarningMsg, None, 'Qt warn\n')
        msgs = self.tank.get_logs()
        self.assertTrue(any('Qt info' in m for m in msgs))
        self.assertTrue(any(m.endswith('Qt warn') for m in msgs))

    def test_qt_message_handler_fatal_exits(self):
        with self.assertRaises(SystemExit):
            qt_message_handler(QtMsgType.QtFatalMsg, None, 'fatal')

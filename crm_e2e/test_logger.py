"""
Keyword-style run logger.

Writes suite / test / keyword blocks in the same layout Robot Framework uses
so a CRM run log can be read top to bottom:

    SUITE CRM E2E
    TEST test_login_with_valid_credentials
    00:00:01.204KEYWORD Login user@example.com
    Status: PASS
"""
import logging
import time
from contextlib import contextmanager
from datetime import datetime
from functools import wraps
from typing import Dict, List, Optional

_RULE = "=" * 100
_THIN_RULE = "-" * 100


def _stamp(ts: Optional[float] = None) -> str:
    moment = datetime.fromtimestamp(ts) if ts is not None else datetime.now()
    return moment.strftime('%Y%m%d %H:%M:%S.%f')[:-3]


def format_elapsed(seconds: float) -> str:
    """Format elapsed time as HH:MM:SS.mmm"""
    seconds = max(0.0, float(seconds or 0))
    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60
    return f"{hours:02d}:{minutes:02d}:{secs:06.3f}"


class TestLogger:
    """Suite/test/keyword logger with pass/fail/skip bookkeeping."""

    __test__ = False  # not a pytest test class

    def __init__(self, logger_name: str = 'crm_e2e'):
        self.logger = logging.getLogger(logger_name)
        self.reset()

    def reset(self):
        self.test_stats = {
            'tests': [],
            'total': 0,
            'passed': 0,
            'failed': 0,
            'skipped': 0,
            'start_time': None,
        }
        self.current_test = None
        self.keyword_stack = []

    # Suite -----------------------------------------------------------------

    def log_suite_start(self, suite_name: str, source: str = None):
        self.test_stats['start_time'] = time.time()
        self.logger.info(_RULE)
        self.logger.info(f"SUITE {suite_name}")
        if source:
            self.logger.info(f"Source: {source}")
        self.logger.info(f"Start: {_stamp()}")
        self.logger.info(_RULE)

    def log_suite_end(self, suite_name: str):
        end_time = time.time()
        start_time = self.test_stats.get('start_time') or end_time
        stats = self.test_stats
        self.logger.info("")
        self.logger.info(_RULE)
        self.logger.info(f"SUITE {suite_name}")
        self.logger.info(f"Start / End / Elapsed: {_stamp(start_time)} / {_stamp(end_time)} / {format_elapsed(end_time - start_time)}")
        self.logger.info(
            f"Status: {stats['total']} tests total, {stats['passed']} passed, "
            f"{stats['failed']} failed, {stats['skipped']} skipped"
        )
        self.logger.info(_RULE)
        self.log_test_statistics()

    def log_test_statistics(self):
        self.logger.info("")
        self.logger.info("Test Statistics")
        self.logger.info(_THIN_RULE)
        self.logger.info(f"{'Test':<60} {'Status':<8} {'Keywords':<10} {'Elapsed':<15}")
        self.logger.info(_THIN_RULE)
        for test in self.test_stats['tests']:
            self.logger.info(
                f"{test['name']:<60} {test.get('status', 'UNKNOWN'):<8} "
                f"{len(test.get('keywords', [])):<10} {format_elapsed(test.get('elapsed', 0)):<15}"
            )
        self.logger.info(_THIN_RULE)

    # Test ------------------------------------------------------------------

    def log_test_start(self, test_name: str, test_file: str = None):
        self.current_test = {
            'name': test_name,
            'file': test_file,
            'start_time': time.time(),
            'status': 'RUNNING',
            'keywords': [],
        }
        self.test_stats['total'] += 1
        self.logger.info("")
        self.logger.info(_RULE)
        self.logger.info(f"TEST {test_name}")
        if test_file:
            self.logger.info(f"Source: {test_file}")
        self.logger.info(f"Start: {_stamp()}")
        self.logger.info(_RULE)

    def log_test_end(self, test_name: str, status: str, message: str = None, elapsed: float = None):
        if not self.current_test:
            # Setup failures can arrive without a matching start
            self.log_test_start(test_name)
        test = self.current_test
        end_time = time.time()
        elapsed_time = elapsed if elapsed is not None else end_time - test['start_time']
        status_upper = status.upper()

        self.logger.info("")
        self.logger.info(f"TEST {test_name}")
        self.logger.info(f"Start / End / Elapsed: {_stamp(test['start_time'])} / {_stamp(end_time)} / {format_elapsed(elapsed_time)}")
        self.logger.info(f"Status: {status_upper}")
        if message:
            self.logger.info(f"Message: {message}")

        test['status'] = status_upper
        test['elapsed'] = elapsed_time
        if status_upper == 'PASS':
            self.test_stats['passed'] += 1
        elif status_upper == 'FAIL':
            self.test_stats['failed'] += 1
            test['error'] = message
        elif status_upper == 'SKIP':
            self.test_stats['skipped'] += 1
        self.test_stats['tests'].append(test)
        self.current_test = None

    # Keyword ---------------------------------------------------------------

    def log_keyword(self, keyword_name: str, args: List = None, elapsed: float = None, status: str = 'PASS'):
        args_str = (" " + ", ".join(str(a) for a in args)) if args else ""
        line = f"{format_elapsed(elapsed or 0)}KEYWORD {keyword_name}{args_str}"
        if status != 'PASS':
            line += f" [{status}]"
        self.logger.info(line)
        if self.current_test is not None:
            self.current_test['keywords'].append({
                'name': keyword_name,
                'args': list(args or []),
                'elapsed': elapsed or 0,
                'status': status,
            })

    def log_keyword_start(self, keyword_name: str, args: List = None):
        self.keyword_stack.append({'name': keyword_name, 'args': args, 'start_time': time.time()})

    def log_keyword_end(self, keyword_name: str, status: str = 'PASS', elapsed: float = None):
        if self.keyword_stack and self.keyword_stack[-1]['name'] == keyword_name:
            kw = self.keyword_stack.pop()
            elapsed_time = elapsed if elapsed is not None else time.time() - kw['start_time']
            self.log_keyword(kw['name'], kw.get('args'), elapsed_time, status)
        else:
            self.log_keyword(keyword_name, [], elapsed or 0, status)

    @contextmanager
    def keyword(self, keyword_name: str, *args):
        """Time a block as one keyword; the keyword is marked FAIL if the block raises."""
        # Timed locally: keyword_stack is shared by bulk-login worker threads
        start = time.time()
        try:
            yield
        except Exception as e:
            self.log_keyword(keyword_name, list(args), time.time() - start, 'FAIL')
            self.log_error(f"{keyword_name} failed: {e}")
            raise
        self.log_keyword(keyword_name, list(args), time.time() - start, 'PASS')

    # Messages --------------------------------------------------------------

    def log_message(self, level: str, message: str):
        time_str = datetime.now().strftime('%H:%M:%S.%f')[:-3]
        self.logger.log(getattr(logging, level.upper(), logging.INFO), f"{time_str}\t{level.upper()}\t{message}")

    def log_info(self, message: str):
        self.log_message('INFO', message)

    def log_error(self, message: str):
        self.log_message('ERROR', message)

    def get_statistics(self) -> Dict:
        return dict(self.test_stats)


_test_logger = None


def get_test_logger() -> TestLogger:
    """Get or create the process-wide TestLogger."""
    global _test_logger
    if _test_logger is None:
        _test_logger = TestLogger()
    return _test_logger


def log_keyword(keyword_name: str = None):
    """Decorator that logs a function call as a keyword."""
    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            # First positional argument is usually the Playwright page; keep it out of the log line
            shown = [a for a in args[1:] if isinstance(a, (str, int, float))]
            with get_test_logger().keyword(keyword_name or func.__name__, *shown):
                return func(*args, **kwargs)
        return wrapper
    return decorator

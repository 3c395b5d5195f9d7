import io
import os
import unittest

from rich.console import Console

from autonord.core.data_models import RateSample, SelectionState, VpnStatus
from autonord.terminal import KeyReader, render_dashboard

STATUS = VpnStatus(state='Connected', hostname='de1042.nordvpn.com', ip='185.130.184.10',
                   country='Germany', city='Frankfurt')


def as_text(renderable):
    console = Console(file=io.StringIO(), width=120, record=True)
    console.print(renderable)
    return console.export_text()


class TestRenderDashboard(unittest.TestCase):
    def test_status_and_rate(self):
        text = as_text(render_dashboard('eth0', STATUS, RateSample(1.6, 0.0, 5.0), SelectionState()))
        self.assertIn("185.130.184.10", text)
        self.assertIn("de1042.nordvpn.com", text)
        self.assertIn("Frankfurt", text)
        self.assertIn("Download: 1.60 Mb/s, Upload: 0.00 Mb/s", text)
        self.assertIn("1337-Roulette mode: OFF", text)
        self.assertIn("'s' for settings", text)

    def test_unavailable_rate_and_status_error(self):
        text = as_text(render_dashboard('eth0', None, None, SelectionState(roulette_enabled=True),
                                        status_error="'nordvpn' not found. Is it installed?",
                                        rate_error="counter reset", message="Last selection: Japan"))
        self.assertIn("N/A Mb/s", text)
        self.assertIn("(counter reset)", text)
        self.assertIn("not found", text)
        self.assertIn("1337-Roulette mode: ON", text)
        self.assertIn("Last selection: Japan", text)

    def test_missing_fields_show_na(self):
        text = as_text(render_dashboard('eth0', VpnStatus(state='Disconnected'), None, SelectionState()))
        self.assertIn("Disconnected", text)
        self.assertRegex(text, r"IP Address:\s+N/A")


class TestKeyReader(unittest.TestCase):
    def setUp(self):
        r, self.w = os.pipe()
        self.stream = os.fdopen(r, 'r')
        self.reader = KeyReader(self.stream)

    def tearDown(self):
        self.stream.close()
        if self.w is not None:
            os.close(self.w)

    def test_poll_reads_one_key(self):
        os.write(self.w, b"sq")
        with self.reader as keys:
            self.assertEqual(keys.poll(0.5), 's')
            self.assertEqual(keys.poll(0.5), 'q')
            self.assertIsNone(keys.poll(0.01))
            self.assertFalse(keys.eof)

    def test_piped_line_ending_is_not_left_for_the_menu(self):
        os.write(self.w, b"s\n2\n")
        self.assertEqual(self.reader.poll(0.5), 's')
        # The menu prompt reads the next line, not the newline typed after 's'
        self.assertEqual(self.stream.readline(), "2\n")

    def test_piped_crlf_and_following_key(self):
        os.write(self.w, b"s\r\nq")
        self.assertEqual(self.reader.poll(0.5), 's')
        self.assertEqual(self.reader.poll(0.5), 'q')
        self.assertIsNone(self.reader.poll(0.01))

    def test_blank_line_is_kept_as_one_key(self):
        os.write(self.w, b"\n\n")
        self.assertEqual(self.reader.poll(0.5), '\n')
        self.assertEqual(self.reader.poll(0.5), '\n')
        self.assertIsNone(self.reader.poll(0.01))

    def test_eof(self):
        os.close(self.w)
        self.w = None
        self.assertIsNone(self.reader.poll(0.5))
        self.assertTrue(self.reader.eof)

    def test_suspended_without_tty(self):
        with self.reader.suspended():
            pass
        os.write(self.w, b"x")
        self.assertEqual(self.reader.poll(0.5), 'x')


if __name__ == '__main__':
    unittest.main()

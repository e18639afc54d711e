import unittest

import make_progress


class BuildrootProgressParserTests(unittest.TestCase):
    def setUp(self) -> None:
        self.parser = make_progress.BuildrootProgressParser()

    def test_package_banner(self) -> None:
        updates = self.parser.parse(">>> uboot 2024.04 Configuring\n")
        self.assertEqual(1, len(updates))
        update = updates[0]
        self.assertEqual("uboot", update.label)
        self.assertEqual("2024.04", update.version)
        self.assertEqual("Configuring", update.step)

    def test_banner_without_version(self) -> None:
        updates = self.parser.parse(">>> host-skeleton  Installing to host directory")
        self.assertEqual(1, len(updates))
        self.assertEqual("host-skeleton", updates[0].label)
        self.assertIsNone(updates[0].version)
        self.assertEqual("Installing to host directory", updates[0].step)

    def test_generic_banner(self) -> None:
        updates = self.parser.parse(">>>   Finalizing target directory")
        self.assertEqual(1, len(updates))
        self.assertEqual(make_progress.GENERIC_LABEL, updates[0].label)
        self.assertEqual("Finalizing target directory", updates[0].step)

    def test_ordinary_output_is_ignored(self) -> None:
        self.assertEqual([], self.parser.parse("  CC      arch/arm64/kernel/setup.o"))
        self.assertEqual([], self.parser.parse(""))


class ProgressTrackerTests(unittest.TestCase):
    def test_tracks_last_step_and_distinct_packages(self) -> None:
        tracker = make_progress.ProgressTracker(make_progress.BuildrootProgressParser())
        for line in (
            ">>> busybox 1.36.1 Building\n",
            "make[1]: Entering directory\n",
            ">>> busybox 1.36.1 Installing to target\n",
            ">>>   Generating root filesystems common tables\n",
        ):
            tracker.feed(line)

        self.assertEqual({"busybox"}, tracker.packages)
        self.assertEqual(make_progress.GENERIC_LABEL, tracker.last_update.label)

    def test_without_parser_nothing_is_recorded(self) -> None:
        tracker = make_progress.ProgressTracker(None)
        tracker.feed(">>> busybox 1.36.1 Building\n")
        self.assertIsNone(tracker.last_update)


class GetProgressParserTests(unittest.TestCase):
    def test_make_commands_get_buildroot_parser(self) -> None:
        parser = make_progress.get_progress_parser(["make", "-j4"])
        self.assertIsInstance(parser, make_progress.BuildrootProgressParser)

    def test_other_commands_have_no_parser(self) -> None:
        self.assertIsNone(make_progress.get_progress_parser(["git", "status"]))
        self.assertIsNone(make_progress.get_progress_parser([]))


class ProgressFormattingTests(unittest.TestCase):
    def test_format_progress_message(self) -> None:
        update = make_progress.ProgressUpdate(label="linux", step="Building", version="6.6.52")
        self.assertEqual("linux 6.6.52 (Building)", make_progress.format_progress_message(update))

    def test_format_progress_message_without_version(self) -> None:
        update = make_progress.ProgressUpdate(label="buildroot", step="Finalizing target directory")
        self.assertEqual(
            "buildroot (Finalizing target directory)", make_progress.format_progress_message(update)
        )

    def test_format_bytes(self) -> None:
        self.assertEqual("512 B", make_progress.format_bytes(512))
        self.assertEqual("1.5 MiB", make_progress.format_bytes(1.5 * 1024**2))
        self.assertEqual("40 MiB", make_progress.format_bytes(40 * 1024**2))


if __name__ == "__main__":  # pragma: no cover
    unittest.main()

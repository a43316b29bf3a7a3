"""Tests for the mailbox scan and per-sender aggregation."""

import asyncio
import unittest
from datetime import datetime

from mailbox_cleaner.connection import ImapConnection
from mailbox_cleaner.exceptions import (
    EmailRetrievalError,
    EmailTransportError,
    NotConnectedError,
    RetrievalCancelledError,
)
from mailbox_cleaner.models import DateFilter, ProcessingStatus
from mailbox_cleaner.retrieval import EmailRetrievalService, is_reportable_sender
from tests.fake_imap import FakeIMAP, connect_to_fake, days_ago


class RetrievalTestCase(unittest.IsolatedAsyncioTestCase):
    batch_size = 2000

    async def asyncSetUp(self):
        self.fake = FakeIMAP()
        self.connection = ImapConnection()
        self.service = EmailRetrievalService(self.connection, batch_size=self.batch_size)

    async def connect(self):
        self.assertTrue(await connect_to_fake(self.connection, self.fake))


class TestSenderAggregation(RetrievalTestCase):

    async def test_groups_by_sender_largest_first(self):
        self.fake.add("Alice <a@x.com>", size=100)
        self.fake.add("Alice <a@x.com>", size=200)
        self.fake.add("Bob <b@y.com>", size=50)
        await self.connect()

        groups = await self.service.get_emails_by_sender()

        self.assertEqual([group.sender_email for group in groups], ["a@x.com", "b@y.com"])
        alice, bob = groups
        self.assertEqual(alice.sender_name, "Alice")
        self.assertEqual(alice.email_count, 2)
        self.assertEqual(alice.total_size, 300)
        self.assertEqual(bob.email_count, 1)
        self.assertEqual(bob.total_size, 50)

        status = self.service.get_processing_status()
        self.assertFalse(status.is_processing)
        self.assertEqual(status.total_emails, 3)
        self.assertEqual(status.processed_emails, 3)
        self.assertEqual(status.current_operation, "Completed")
        self.assertEqual(status.progress_percentage, 100.0)

    async def test_addresses_are_grouped_case_insensitively(self):
        self.fake.add("Alice <Alice@X.com>")
        self.fake.add("alice@x.COM")
        await self.connect()

        groups = await self.service.get_emails_by_sender()

        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0].sender_email, "alice@x.com")
        self.assertEqual(groups[0].email_count, 2)

    async def test_first_seen_display_name_wins(self):
        self.fake.add("Newsletter <news@shop.com>")
        self.fake.add("Shop Deals <news@shop.com>")
        await self.connect()

        groups = await self.service.get_emails_by_sender()

        self.assertEqual(groups[0].sender_name, "Newsletter")

    async def test_bare_address_uses_email_as_name(self):
        self.fake.add("bare@z.com")
        await self.connect()

        groups = await self.service.get_emails_by_sender()

        self.assertEqual(groups[0].sender_name, "bare@z.com")

    async def test_equal_counts_keep_first_seen_order(self):
        self.fake.add("c@z.com")
        self.fake.add("a@z.com")
        self.fake.add("b@z.com")
        await self.connect()

        groups = await self.service.get_emails_by_sender()

        self.assertEqual([group.sender_email for group in groups], ["c@z.com", "a@z.com", "b@z.com"])

    async def test_unparseable_and_missing_senders_are_excluded(self):
        self.fake.add("Alice <a@x.com>")
        self.fake.add("Undisclosed recipients")
        self.fake.add(None)
        await self.connect()

        groups = await self.service.get_emails_by_sender()

        self.assertEqual([group.sender_email for group in groups], ["a@x.com"])
        status = self.service.get_processing_status()
        self.assertEqual(status.total_emails, 3)
        # the message without a From header is not counted as processed
        self.assertEqual(status.processed_emails, 2)

    async def test_missing_size_counts_as_zero(self):
        self.fake.add("a@x.com", size=None)
        self.fake.add("a@x.com", size=10)
        await self.connect()

        groups = await self.service.get_emails_by_sender()

        self.assertEqual(groups[0].total_size, 10)
        self.assertEqual(sorted(summary.size for summary in groups[0].emails), [0, 10])

    async def test_samples_are_capped_and_newest_first(self):
        for day in range(15):
            self.fake.add("Bulk <bulk@x.com>", date=datetime(2024, 1, 1 + day, 8, 0), size=10)
        await self.connect()

        groups = await self.service.get_emails_by_sender()

        group = groups[0]
        self.assertEqual(group.email_count, 15)
        self.assertEqual(group.total_size, 150)
        self.assertEqual(len(group.emails), 10)
        dates = [summary.date for summary in group.emails]
        self.assertEqual(dates, sorted(dates, reverse=True))
        self.assertTrue(all(summary.sender_email == "bulk@x.com" for summary in group.emails))

    async def test_sample_cap_is_configurable(self):
        service = EmailRetrievalService(self.connection, max_samples=0)
        self.fake.add("a@x.com")
        await self.connect()

        groups = await service.get_emails_by_sender()

        self.assertEqual(groups[0].email_count, 1)
        self.assertEqual(groups[0].emails, ())

    async def test_scan_is_repeatable(self):
        self.fake.add("Alice <a@x.com>")
        self.fake.add("Bob <b@y.com>")
        await self.connect()

        first = await self.service.get_emails_by_sender()
        second = await self.service.get_emails_by_sender()

        self.assertEqual(first, second)
        self.assertEqual(self.service.get_processing_status().processed_emails, 2)


class TestDateFilteredScan(RetrievalTestCase):

    async def test_older_than_days_keeps_only_old_senders(self):
        self.fake.add("Old Sender <old@x.com>", date=days_ago(40), size=400)
        self.fake.add("Recent Sender <recent@x.com>", date=days_ago(5), size=50)
        await self.connect()

        groups = await self.service.get_emails_by_sender(DateFilter.older_than_days(30))

        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0].sender_email, "old@x.com")
        self.assertEqual(groups[0].email_count, 1)
        self.assertEqual(groups[0].total_size, 400)
        status = self.service.get_processing_status()
        self.assertEqual(status.total_emails, 1)
        self.assertEqual(status.current_operation, "Completed")

    async def test_older_than_filter(self):
        self.fake.add("old@x.com", date=days_ago(730))
        self.fake.add("new@x.com", date=days_ago(30))
        await self.connect()

        groups = await self.service.get_emails_by_sender(DateFilter.older_than_years(1))

        self.assertEqual([group.sender_email for group in groups], ["old@x.com"])
        self.assertEqual(self.service.get_processing_status().total_emails, 1)
        searches = [args for command, args in self.fake.commands if command == "SEARCH"]
        self.assertTrue(searches[-1][-1].startswith("BEFORE "))

    async def test_no_matches_completes_with_zero_totals(self):
        self.fake.add("new@x.com", date=days_ago(1))
        await self.connect()

        groups = await self.service.get_emails_by_sender(DateFilter.older_than_days(30))

        self.assertEqual(groups, [])
        status = self.service.get_processing_status()
        self.assertFalse(status.is_processing)
        self.assertEqual(status.total_emails, 0)
        self.assertEqual(status.current_operation, "Completed")
        self.assertEqual(status.progress_percentage, 0)
        self.assertFalse(any(command == "FETCH" for command, _ in self.fake.commands))


class TestBatching(RetrievalTestCase):
    batch_size = 2

    async def test_messages_are_fetched_in_batches(self):
        for index in range(5):
            self.fake.add(f"s{index % 2}@x.com")
        await self.connect()

        groups = await self.service.get_emails_by_sender()

        fetches = [args for command, args in self.fake.commands if command == "FETCH"]
        self.assertEqual([args[0] for args in fetches], ["1,2", "3,4", "5"])
        self.assertEqual(sum(group.email_count for group in groups), 5)
        status = self.service.get_processing_status()
        self.assertEqual(status.total_batches, 3)
        self.assertEqual(status.current_batch, 3)

    async def test_cancelled_task_leaves_terminal_status(self):
        for index in range(4):
            self.fake.add(f"s{index}@x.com")
        await self.connect()

        fetch_started = asyncio.Event()

        async def blocking_fetch(uids):
            fetch_started.set()
            await asyncio.Event().wait()

        self.connection.fetch_envelopes = blocking_fetch
        scan = asyncio.create_task(self.service.get_emails_by_sender())
        await fetch_started.wait()
        self.assertTrue(self.service.get_processing_status().is_processing)

        scan.cancel()
        with self.assertRaises(asyncio.CancelledError):
            await scan

        status = self.service.get_processing_status()
        self.assertFalse(status.is_processing)
        self.assertEqual(status.current_operation, "Cancelled")
        self.assertEqual(status.total_batches, 2)
        self.assertEqual(status.processed_emails, 0)

    async def test_cancel_stops_at_batch_boundary(self):
        for index in range(5):
            self.fake.add(f"s{index}@x.com")
        await self.connect()

        fetch_envelopes = self.connection.fetch_envelopes

        async def fetch_then_cancel(uids):
            envelopes = await fetch_envelopes(uids)
            self.service.cancel()
            return envelopes

        self.connection.fetch_envelopes = fetch_then_cancel

        with self.assertRaises(RetrievalCancelledError):
            await self.service.get_emails_by_sender()

        status = self.service.get_processing_status()
        self.assertFalse(status.is_processing)
        self.assertEqual(status.current_operation, "Cancelled")
        self.assertEqual(status.current_batch, 1)
        self.assertEqual(status.processed_emails, 2)

        # a new scan starts with the cancellation cleared
        self.connection.fetch_envelopes = fetch_envelopes
        groups = await self.service.get_emails_by_sender()
        self.assertEqual(len(groups), 5)


class TestRetrievalFailures(RetrievalTestCase):

    async def test_not_connected_leaves_status_untouched(self):
        with self.assertRaises(NotConnectedError):
            await self.service.get_emails_by_sender()
        self.assertEqual(self.service.get_processing_status(), ProcessingStatus())

    async def test_fetch_failure_marks_status_error(self):
        self.fake.add("a@x.com")
        await self.connect()
        self.fake.fail_on["FETCH"] = OSError("connection reset by peer")

        with self.assertRaises(EmailRetrievalError) as ctx:
            await self.service.get_emails_by_sender()

        self.assertIsInstance(ctx.exception.__cause__, EmailTransportError)
        status = self.service.get_processing_status()
        self.assertFalse(status.is_processing)
        self.assertEqual(status.current_operation, "Error occurred")

    async def test_search_failure_is_wrapped(self):
        await self.connect()
        self.fake.fail_on["SEARCH"] = OSError("socket closed")

        with self.assertRaises(EmailRetrievalError):
            await self.service.get_emails_by_sender()

    def test_invalid_construction(self):
        with self.assertRaises(ValueError):
            EmailRetrievalService(self.connection, batch_size=0)
        with self.assertRaises(ValueError):
            EmailRetrievalService(self.connection, max_samples=-1)


class TestIsReportableSender(unittest.TestCase):

    def test_real_address(self):
        self.assertTrue(is_reportable_sender("a@x.com"))

    def test_rejected_keys(self):
        for key in ("", "no-at-sign", "unknown@example.com", "unknown.user@x.com"):
            with self.subTest(key=key):
                self.assertFalse(is_reportable_sender(key))


if __name__ == "__main__":
    unittest.main()

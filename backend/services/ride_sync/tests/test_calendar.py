from datetime import datetime, timezone as dt_timezone
from urllib.parse import parse_qs, urlparse

from django.test import SimpleTestCase, override_settings

from services.ride_sync.calendar import (
	build_ride_ics,
	escape_text,
	fold_line,
	google_calendar_link,
	parse_local_datetime,
	ride_ics_filename,
)
from services.ride_sync.exceptions import ValidationFailedError

from .helpers import MANALI_PLAN, unescape_text, unfold

NOW = datetime(2026, 1, 5, 10, 30, tzinfo=dt_timezone.utc)


def manali(**overrides):
	return {'id': 'r1', 'status': 'planned', **MANALI_PLAN, **overrides}


class BuildRideIcsTests(SimpleTestCase):

	def test_delhi_to_manali_event(self):
		ics = build_ride_ics(manali(), now=NOW)
		lines = unfold(ics).split('\r\n')

		self.assertEqual(lines[:6], [
			'BEGIN:VCALENDAR',
			'VERSION:2.0',
			'PRODID:-//xBhp//Ride Planner//EN',
			'CALSCALE:GREGORIAN',
			'METHOD:PUBLISH',
			'BEGIN:VEVENT',
		])
		self.assertIn('UID:ride-r1-20260105T103000000000@xbhp', lines)
		self.assertIn('DTSTAMP:20260105T103000Z', lines)
		self.assertIn('DTSTART:20260210T060000', lines)
		self.assertIn('DTEND:20260212T180000', lines)
		self.assertIn('SUMMARY:Manali Run', lines)
		self.assertIn('LOCATION:Delhi → Chandigarh → Manali', lines)
		self.assertIn(
			'DESCRIPTION:Transport: BIKE\\nBudget: MID\\nStatus: PLANNED'
			'\\nRoute: Delhi → Chandigarh → Manali\\nNotes: Carry rain gear',
			lines,
		)
		self.assertEqual(ics.count('BEGIN:VEVENT'), 1)
		self.assertEqual(ics.count('END:VEVENT'), 1)
		self.assertTrue(ics.endswith('END:VCALENDAR\r\n'))

	def test_every_line_ends_with_crlf(self):
		ics = build_ride_ics(manali(), now=NOW)
		self.assertNotIn('\n', ics.replace('\r\n', ''))

	def test_without_start_time_uses_all_day_placeholder(self):
		ics = build_ride_ics(manali(scheduled_start='', scheduled_end=''), now=NOW)
		self.assertIn('DTSTART;VALUE=DATE:20260105\r\n', ics)
		self.assertNotIn('DTEND', ics)

	@override_settings(TIME_ZONE='Asia/Kolkata')
	def test_all_day_placeholder_uses_local_date(self):
		# 19:00 UTC is already the next day in India
		late = datetime(2026, 1, 5, 19, 0, tzinfo=dt_timezone.utc)
		ics = build_ride_ics(manali(scheduled_start='', scheduled_end=''), now=late)
		self.assertIn('DTSTART;VALUE=DATE:20260106\r\n', ics)
		self.assertIn('DTSTAMP:20260105T190000Z\r\n', ics)

	def test_comma_in_title_is_escaped_in_summary(self):
		ics = build_ride_ics(manali(title='Delhi, Manali'), now=NOW)
		lines = unfold(ics).split('\r\n')
		self.assertIn('SUMMARY:Delhi\\, Manali', lines)
		summary = next(line for line in lines if line.startswith('SUMMARY:'))
		self.assertEqual(unescape_text(summary[len('SUMMARY:'):]), 'Delhi, Manali')

	def test_end_time_is_optional(self):
		ics = build_ride_ics(manali(scheduled_end=''), now=NOW)
		self.assertIn('DTSTART:20260210T060000\r\n', ics)
		self.assertNotIn('DTEND', ics)

	def test_unsaved_draft_gets_placeholder_uid(self):
		ride = manali()
		del ride['id']
		ics = build_ride_ics(ride, now=NOW)
		self.assertIn('UID:ride-draft-20260105T103000000000@xbhp', ics)

	def test_summary_is_single_line(self):
		ics = build_ride_ics(manali(title='Manali\nRun'), now=NOW)
		self.assertIn('SUMMARY:Manali Run\r\n', ics)

	def test_notes_round_trip_through_escaping(self):
		notes = 'Fuel at Murthal; chai, parathas\nthen C:\\bike\\route'
		ics = unfold(build_ride_ics(manali(notes=notes), now=NOW))
		description = next(
			line for line in ics.split('\r\n') if line.startswith('DESCRIPTION:')
		)[len('DESCRIPTION:'):]

		self.assertTrue(unescape_text(description).endswith('Notes: ' + notes))

	def test_long_lines_are_folded_at_75_octets(self):
		ics = build_ride_ics(manali(title='Ride to Spiti ' + 'é' * 120), now=NOW)
		for line in ics.split('\r\n'):
			self.assertLessEqual(len(line.encode('utf-8')), 75)
		self.assertIn('SUMMARY:Ride to Spiti ' + 'é' * 120, unfold(ics))

	@override_settings(RIDE_CALENDAR_PRODID='-//Test//Rides//EN', RIDE_CALENDAR_UID_DOMAIN='example.org')
	def test_prodid_and_uid_domain_come_from_settings(self):
		ics = build_ride_ics(manali(), now=NOW)
		self.assertIn('PRODID:-//Test//Rides//EN\r\n', ics)
		self.assertIn('@example.org\r\n', ics)

	def test_invalid_schedule_is_rejected(self):
		with self.assertRaises(ValidationFailedError):
			build_ride_ics(manali(scheduled_start='next tuesday'), now=NOW)


class EscapeAndFoldTests(SimpleTestCase):

	def test_escape_order(self):
		self.assertEqual(escape_text('a\\b'), 'a\\\\b')
		self.assertEqual(escape_text('a,b;c'), 'a\\,b\\;c')
		self.assertEqual(escape_text('a\r\nb\rc'), 'a\\nb\\nc')
		self.assertEqual(escape_text(None), '')

	def test_escape_round_trip(self):
		for text in ('plain', 'a,b', 'x;y', 'back\\slash', 'two\nlines', '\\n literal'):
			self.assertEqual(unescape_text(escape_text(text)), text)

	def test_short_line_is_untouched(self):
		self.assertEqual(fold_line('SUMMARY:Short'), 'SUMMARY:Short')

	def test_fold_does_not_split_multibyte_characters(self):
		folded = fold_line('SUMMARY:' + '→' * 60)
		for part in folded.split('\r\n'):
			part.encode('utf-8').decode('utf-8')
			self.assertLessEqual(len(part.encode('utf-8')), 75)
		self.assertEqual(unfold(folded), 'SUMMARY:' + '→' * 60)


class CalendarHelperTests(SimpleTestCase):

	def test_parse_local_datetime_drops_timezone(self):
		self.assertEqual(parse_local_datetime('2026-02-10T06:00'), datetime(2026, 2, 10, 6, 0))
		self.assertEqual(
			parse_local_datetime('2026-02-10T06:00:00+05:30'), datetime(2026, 2, 10, 6, 0)
		)
		self.assertIsNone(parse_local_datetime(''))

	def test_filename(self):
		self.assertEqual(ride_ics_filename('Manali Run'), 'Manali_Run.ics')
		self.assertEqual(ride_ics_filename('  Leh /  "Ladakh" '), 'Leh_Ladakh.ics')
		self.assertEqual(ride_ics_filename(''), 'ride.ics')
		self.assertEqual(ride_ics_filename(None), 'ride.ics')

	def test_google_calendar_link(self):
		link = google_calendar_link(manali())
		query = parse_qs(urlparse(link).query)
		self.assertTrue(link.startswith('https://calendar.google.com/calendar/render?'))
		self.assertEqual(query['action'], ['TEMPLATE'])
		self.assertEqual(query['text'], ['Manali Run'])
		self.assertEqual(query['dates'], ['20260210T060000/20260212T180000'])
		self.assertEqual(query['location'], ['Delhi → Chandigarh → Manali'])

	def test_google_calendar_link_needs_start(self):
		self.assertIsNone(google_calendar_link(manali(scheduled_start='')))

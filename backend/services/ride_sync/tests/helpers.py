import asyncio

from services.ride_sync.plans import create_ride_plan

MANALI_PLAN = {
	'title': 'Manali Run',
	'start_location': 'Delhi',
	'end_location': 'Manali',
	'stops': ['Chandigarh'],
	'transport_mode': 'bike',
	'budget_tier': 'mid',
	'scheduled_start': '2026-02-10T06:00',
	'scheduled_end': '2026-02-12T18:00',
	'notes': 'Carry rain gear',
	'media_intent': 'Vlog the Atal tunnel',
}


async def settle(rounds=5):
	"""Let call_soon deliveries and pending writes run."""
	for _ in range(rounds):
		await asyncio.sleep(0)


async def wait_for(predicate, timeout=2.0, message='condition not met'):
	loop = asyncio.get_running_loop()
	deadline = loop.time() + timeout
	while not predicate():
		if loop.time() > deadline:
			raise AssertionError(message)
		await asyncio.sleep(0.01)


async def seed_ride(store, owner_id='u1', **overrides):
	return await create_ride_plan(store, owner_id, {**MANALI_PLAN, **overrides})


def unescape_text(value):
	"""Inverse of calendar.escape_text, for round-trip checks."""
	out = []
	chars = iter(value)
	for char in chars:
		if char != '\\':
			out.append(char)
			continue
		following = next(chars, '')
		out.append('\n' if following in ('n', 'N') else following)
	return ''.join(out)


def unfold(text):
	return text.replace('\r\n ', '')

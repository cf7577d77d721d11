"""Closed enumerations shared by the rides models and the sync engine."""

TRANSPORT_CHOICES = [
    ('bike', 'Bike'),
    ('car', 'Car'),
    ('other', 'Other'),
]

BUDGET_CHOICES = [
    ('budget', 'Budget'),
    ('mid', 'Mid'),
    ('luxury', 'Luxury'),
]

STATUS_CHOICES = [
    ('planned', 'Planned'),
    ('ongoing', 'Ongoing'),
    ('completed', 'Completed'),
    ('cancelled', 'Cancelled'),
]

CONTENT_KIND_CHOICES = [
    ('photo', 'Photo'),
    ('video', 'Video'),
    ('blog', 'Blog'),
]

# Older clients wrote these spellings
BUDGET_ALIASES = {'low': 'budget', 'high': 'luxury'}
STATUS_ALIASES = {'started': 'ongoing', 'active': 'ongoing'}

DEFAULT_TRANSPORT = 'bike'
DEFAULT_BUDGET = 'mid'
INITIAL_STATUS = 'planned'

LINKED_CONTENT_KINDS = ('photo', 'video')

TRANSPORT_VALUES = tuple(value for value, _ in TRANSPORT_CHOICES)
BUDGET_VALUES = tuple(value for value, _ in BUDGET_CHOICES)
STATUS_VALUES = tuple(value for value, _ in STATUS_CHOICES)
CONTENT_KIND_VALUES = tuple(value for value, _ in CONTENT_KIND_CHOICES)

"""Seed data for the initial schema."""

PLATFORM_SETTINGS = """
INSERT INTO platform_settings (key, value, value_type, category, description)
VALUES
    ('platformCommissionRate', '15', 'number', 'fees',
     'Platform commission percentage (15 means the producer keeps 85%)'),
    ('processingFeePercentage', '2.9', 'number', 'fees',
     'Payment processing fee percentage added to the buyer total'),
    ('processingFeeFixed', '0.30', 'number', 'fees',
     'Fixed processing fee per transaction in USD'),
    ('minimumPayoutAmount', '50', 'number', 'payout',
     'Minimum available balance required for a payout in USD'),
    ('payoutFrequency', 'weekly', 'string', 'payout',
     'Payout frequency: daily, weekly, biweekly, monthly'),
    ('maxBeatsPerUpload', '10', 'number', 'general',
     'Maximum number of beats per bulk upload'),
    ('maxFileSizeMB', '100', 'number', 'general',
     'Maximum file size for uploads in MB'),
    ('maintenanceMode', 'false', 'boolean', 'general',
     'Enable maintenance mode');
"""

GENRES = """
INSERT INTO genres (name, slug, color, sort_order)
VALUES
    ('Afrobeats', 'afrobeats', '#F59E0B', 1),
    ('Amapiano',  'amapiano',  '#10B981', 2),
    ('Hip Hop',   'hip-hop',   '#6366F1', 3),
    ('Trap',      'trap',      '#EF4444', 4),
    ('R&B',       'rnb',       '#EC4899', 5),
    ('Drill',     'drill',     '#64748B', 6),
    ('Dancehall', 'dancehall', '#84CC16', 7),
    ('Pop',       'pop',       '#06B6D4', 8);
"""

ALL = [PLATFORM_SETTINGS, GENRES]

from __future__ import annotations

SCHEMA_SQL = """
PRAGMA foreign_keys = ON;

CREATE TABLE IF NOT EXISTS users (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  email TEXT NOT NULL UNIQUE COLLATE NOCASE,
  first_name TEXT NOT NULL,
  last_name TEXT NOT NULL,
  phone TEXT,
  version INTEGER NOT NULL DEFAULT 1,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS user_history (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL,
  version INTEGER NOT NULL,
  email TEXT NOT NULL,
  first_name TEXT NOT NULL,
  last_name TEXT NOT NULL,
  phone TEXT,
  created_at TEXT NOT NULL,
  UNIQUE(user_id, version),
  FOREIGN KEY(user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS user_roles (
  user_id INTEGER NOT NULL,
  role TEXT NOT NULL,
  created_at TEXT NOT NULL,
  PRIMARY KEY(user_id, role),
  FOREIGN KEY(user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS login_tokens (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  email TEXT NOT NULL COLLATE NOCASE,
  token TEXT NOT NULL UNIQUE,
  used INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  used_at TEXT
);

CREATE TABLE IF NOT EXISTS session_tokens (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  user_id INTEGER NOT NULL,
  token TEXT NOT NULL UNIQUE,
  created_at TEXT NOT NULL,
  FOREIGN KEY(user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS lists (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  description TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS list_members (
  list_id INTEGER NOT NULL,
  email TEXT NOT NULL COLLATE NOCASE,
  created_at TEXT NOT NULL,
  PRIMARY KEY(list_id, email),
  FOREIGN KEY(list_id) REFERENCES lists(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS events (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  slug TEXT NOT NULL UNIQUE,
  title TEXT NOT NULL,
  description TEXT,
  starts_at TEXT NOT NULL,
  ends_at TEXT NOT NULL,
  capacity INTEGER NOT NULL,
  unlisted INTEGER NOT NULL DEFAULT 0,
  guest_list_id INTEGER,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  FOREIGN KEY(guest_list_id) REFERENCES lists(id) ON DELETE SET NULL
);

CREATE TABLE IF NOT EXISTS spots (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  name TEXT NOT NULL,
  description TEXT,
  qty_total INTEGER NOT NULL,
  qty_per_person INTEGER NOT NULL,
  kind TEXT NOT NULL CHECK (kind IN ('free', 'fixed', 'variable', 'work')),
  sort INTEGER NOT NULL DEFAULT 0,
  required_contribution INTEGER,
  min_contribution INTEGER,
  max_contribution INTEGER,
  suggested_contribution INTEGER,
  required_notice_hours INTEGER,
  created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS event_spots (
  event_id INTEGER NOT NULL,
  spot_id INTEGER NOT NULL,
  PRIMARY KEY(event_id, spot_id),
  FOREIGN KEY(event_id) REFERENCES events(id) ON DELETE CASCADE,
  FOREIGN KEY(spot_id) REFERENCES spots(id)
);

CREATE TABLE IF NOT EXISTS rsvp_sessions (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  event_id INTEGER NOT NULL,
  token TEXT NOT NULL UNIQUE,
  status TEXT NOT NULL CHECK (status IN ('pending', 'paid')),
  first_name TEXT,
  last_name TEXT,
  email TEXT COLLATE NOCASE,
  user_id INTEGER,
  payment_client_secret TEXT,
  payment_intent_id TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  FOREIGN KEY(event_id) REFERENCES events(id) ON DELETE CASCADE,
  FOREIGN KEY(user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS rsvps (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  event_id INTEGER NOT NULL,
  spot_id INTEGER NOT NULL,
  session_id INTEGER NOT NULL,
  contribution INTEGER NOT NULL,
  status TEXT NOT NULL CHECK (status IN ('pending', 'paid')),
  first_name TEXT,
  last_name TEXT,
  email TEXT COLLATE NOCASE,
  user_id INTEGER,
  checkin_at TEXT,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL,
  FOREIGN KEY(event_id) REFERENCES events(id) ON DELETE CASCADE,
  FOREIGN KEY(spot_id) REFERENCES spots(id),
  FOREIGN KEY(session_id) REFERENCES rsvp_sessions(id) ON DELETE CASCADE,
  FOREIGN KEY(user_id) REFERENCES users(id)
);

CREATE TABLE IF NOT EXISTS posts (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  slug TEXT NOT NULL UNIQUE,
  title TEXT NOT NULL,
  author TEXT NOT NULL,
  content TEXT NOT NULL,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS email_batches (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  size INTEGER NOT NULL,
  sent INTEGER NOT NULL DEFAULT 0,
  errored INTEGER NOT NULL DEFAULT 0,
  created_at TEXT NOT NULL,
  updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS email_queue (
  batch_id INTEGER PRIMARY KEY,
  position INTEGER NOT NULL,
  FOREIGN KEY(batch_id) REFERENCES email_batches(id)
);

CREATE TABLE IF NOT EXISTS emails (
  id INTEGER PRIMARY KEY AUTOINCREMENT,
  kind TEXT NOT NULL,
  state TEXT NOT NULL DEFAULT 'queued' CHECK (state IN ('queued', 'sent', 'errored')),
  user_id INTEGER,
  address TEXT NOT NULL COLLATE NOCASE,
  post_id INTEGER,
  list_id INTEGER,
  event_id INTEGER,
  notification_id INTEGER,
  rsvp_session_id INTEGER,
  login_token_id INTEGER,
  batch_id INTEGER,
  error TEXT,
  created_at TEXT NOT NULL,
  sent_at TEXT,
  errored_at TEXT,
  opened_at TEXT,
  FOREIGN KEY(batch_id) REFERENCES email_batches(id)
);

CREATE UNIQUE INDEX IF NOT EXISTS uniq_rsvps_paid_email ON rsvps(event_id, email) WHERE status = 'paid';
CREATE UNIQUE INDEX IF NOT EXISTS uniq_sessions_pending_email
  ON rsvp_sessions(event_id, email) WHERE status = 'pending' AND email IS NOT NULL;

CREATE INDEX IF NOT EXISTS idx_events_starts_at ON events(starts_at);
CREATE INDEX IF NOT EXISTS idx_rsvps_event_id ON rsvps(event_id);
CREATE INDEX IF NOT EXISTS idx_rsvps_session_id ON rsvps(session_id);
CREATE INDEX IF NOT EXISTS idx_rsvp_sessions_event_email ON rsvp_sessions(event_id, email);
CREATE INDEX IF NOT EXISTS idx_emails_batch_state ON emails(batch_id, state);
CREATE INDEX IF NOT EXISTS idx_emails_post_list ON emails(address, post_id, list_id);
CREATE INDEX IF NOT EXISTS idx_email_queue_position ON email_queue(position);
"""

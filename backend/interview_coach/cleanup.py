from __future__ import annotations
from datetime import datetime, timedelta
from sqlalchemy import delete
from sqlalchemy.orm import Session

from .models import DraftRow, InteractionRow, InterviewSessionRow


def purge_stale(db: Session, days: int = 7) -> int:
	threshold = datetime.utcnow() - timedelta(days=days)
	removed = 0

	# Drafts nobody came back for
	res = db.execute(delete(DraftRow).where(DraftRow.updated_at < threshold))
	removed += res.rowcount or 0

	# Sessions that were never started or were left; completed ones are kept for their reports
	stale_ids = [
		row.id
		for row in db.query(InterviewSessionRow.id).filter(
			InterviewSessionRow.status.in_(("NotStarted", "Abandoned")),
			InterviewSessionRow.updated_at < threshold,
		)
	]
	if stale_ids:
		db.execute(delete(InteractionRow).where(InteractionRow.session_id.in_(stale_ids)))
		res = db.execute(delete(InterviewSessionRow).where(InterviewSessionRow.id.in_(stale_ids)))
		removed += res.rowcount or 0

	db.commit()
	return removed

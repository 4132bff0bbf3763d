"""In-memory scheduler for orchestration tests.

Submitted jobs stay visible in the queue for ``polls_visible`` listings,
then disappear. ``scripted`` listings (lists of entries, or exceptions to
raise) are served first, one per ``list_jobs`` call.
"""

from imputepipe.contracts.failure import SubmissionError
from imputepipe.scheduler.client import SchedulerClient
from imputepipe.scheduler.jobs import QueueEntry, SubmittedJob


class FakeScheduler(SchedulerClient):

    def __init__(self, on_submit=None, polls_visible=1, reject=None, state="R"):
        self.on_submit = on_submit
        self.polls_visible = polls_visible
        self.reject = reject
        self.state = state
        self.submitted = []
        self.jobs = []
        self.cancelled = []
        self.scripted = []
        self.list_calls = 0
        self._visible = []
        self._next_id = 1000

    def submit(self, spec):
        if self.reject is not None and self.reject(spec):
            raise SubmissionError(f"rejected {spec.name}", job_name=spec.name)

        job_id = str(self._next_id)
        self._next_id += 1
        self.submitted.append(spec)

        entry = QueueEntry(job_id=job_id, name=spec.name, state=self.state, comment=spec.tag or "")
        self._visible.append([entry, self.polls_visible])
        if self.on_submit is not None:
            self.on_submit(spec)

        job = SubmittedJob.from_spec(job_id, spec)
        self.jobs.append(job)
        return job

    def list_jobs(self):
        self.list_calls += 1
        if self.scripted:
            item = self.scripted.pop(0)
            if isinstance(item, Exception):
                raise item
            return list(item)

        entries = [entry for entry, _ in self._visible]
        for item in self._visible:
            item[1] -= 1
        self._visible = [item for item in self._visible if item[1] > 0]
        return entries

    def cancel(self, job_ids):
        self.cancelled.extend(job_ids)
        return True

    def stages_submitted(self):
        """Stage names in first-submission order."""
        order = []
        for spec in self.submitted:
            if spec.stage not in order:
                order.append(spec.stage)
        return order

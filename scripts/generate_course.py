#!/usr/bin/env python3
"""Upload documents, generate a course and wait for it. Usage: python scripts/generate_course.py "Title" file1.pdf [file2.md ...]"""
import argparse
import os
import sys

from korsify.client.api_client import API_BASE, ApiError, KorsifyClient
from korsify.client.poller import JobPoller


def main() -> int:
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("title")
    parser.add_argument("files", nargs="+")
    parser.add_argument("--modules", type=int, default=3)
    parser.add_argument("--difficulty", default="intermediate")
    parser.add_argument("--quiz-per", choices=["module", "lesson"], default="module")
    parser.add_argument("--no-quizzes", action="store_true")
    parser.add_argument("--timeout", type=float, default=None, help="stop waiting after N seconds")
    parser.add_argument("--api", default=API_BASE)
    args = parser.parse_args()

    client = KorsifyClient(args.api)
    try:
        doc_ids = []
        for path in args.files:
            with open(path, "rb") as f:
                doc_ids.append(client.upload_document(os.path.basename(path), f.read())["id"])
        course = client.create_course(args.title)
        job_id = client.start_generation(
            course["id"],
            doc_ids,
            {
                "moduleCount": args.modules,
                "difficultyLevel": args.difficulty,
                "quizFrequency": args.quiz_per,
                "generateQuizzes": not args.no_quizzes,
            },
        )
    except ApiError as e:
        print(f"error: {e.detail}", file=sys.stderr)
        return 1

    print(f"job {job_id} started for course {course['id']}")
    poller = JobPoller(
        client,
        timeout=args.timeout,
        on_update=lambda j: print(f"  {j['phase']:<20} {j['progress']:>3}%  {j['status']}"),
    )
    job = poller.start(job_id).result()
    if job["status"] == "failed":
        print(f"failed ({job.get('errorKind')}): {job.get('error')}", file=sys.stderr)
        return 1
    print(f"completed: {job.get('result')}")
    return 0


if __name__ == "__main__":
    sys.exit(main())

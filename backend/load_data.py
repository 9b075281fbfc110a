"""
Data Loader Script - seeds the question bank and an exam via the admin API.

Reads question_bank.json, posts every question, then creates (and
publishes) the exam described in the same file.

Usage:
    python load_data.py                              # Uses default URL
    python load_data.py http://localhost:8000         # Custom API URL
"""

import json
import os
import sys

import httpx


def post_json(client, url, data):
    resp = client.post(url, json=data)
    if resp.status_code >= 400:
        print(f"HTTP Error {resp.status_code} for {url}: {resp.text}")
        sys.exit(1)
    return resp.json()


def main():
    api_url = sys.argv[1] if len(sys.argv) > 1 else os.getenv("API_URL", "http://localhost:8000")

    data_file = os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "question_bank.json")
    if not os.path.exists(data_file):
        data_file = "question_bank.json"

    if not os.path.exists(data_file):
        print("Error: Could not find question_bank.json")
        sys.exit(1)

    print(f"Loading data from: {data_file}")
    with open(data_file, 'r', encoding='utf-8') as f:
        bank = json.load(f)

    questions = bank.get("questions", [])
    exam = bank.get("exam")

    print(f"Found {len(questions)} questions")
    print(f"Sending to: {api_url}")
    print()

    by_subject = {}
    with httpx.Client(timeout=30.0) as client:
        for q in questions:
            created = post_json(client, f"{api_url}/api/admin/questions", q)
            by_subject[created["subject"]] = by_subject.get(created["subject"], 0) + 1

        created_exam = post_json(client, f"{api_url}/api/admin/exams", exam) if exam else None

    print("=" * 60)
    print("SEED SUMMARY")
    print("=" * 60)
    for subject, count in sorted(by_subject.items()):
        print(f"  {subject:<40} {count:>4} questions")
    if created_exam:
        print()
        print(f"  Exam: {created_exam['title']} ({created_exam['id']})")
        print(f"    {created_exam['total_questions']} questions, {created_exam['duration']} min, "
              f"pass at {created_exam['passing_score']}%")
        print(f"    Published: {'yes' if created_exam['is_active'] else 'no'}")
    print("=" * 60)


if __name__ == "__main__":
    main()

"""
Starlight business-plan flow load test.

Modules:
- config: run mode, AI flag, base URL, load profiles and thresholds
- fixtures: request payloads, including the fixed subsection contents
- responses: typed decoding of API response bodies
- steps: single-request executor with named expectations
- flow: the end-to-end journey run by each virtual user
- metrics: shared rate/trend/counter series and threshold evaluation
- report: text, HTML and JSON summaries
- locustfile: Locust wiring (user class, load shape, run hooks)
- check_thresholds: CLI gate over a stored summary.json
"""

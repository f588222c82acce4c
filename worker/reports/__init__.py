"""Report generation: page narratives, synthesis and the quality gate.

Use explicit imports:
    from worker.reports.narratives import PageNarrativeGenerator
    from worker.reports.synthesis import ReportSynthesizer, SynthesisInput
    from worker.reports.quality_gate import ReportQualityGate
"""

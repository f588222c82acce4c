"""Report documents shared by report tests."""


def english_report(priority_count: int = 10) -> dict:
    """A complete English expert report that passes the quality gate."""
    return {
        "executiveSummary": "The site has a solid base and clear growth potential.",
        "reportExplanation": "This report lists the fixes with the highest return first.",
        "clientMessageTemplate": "Hello, here are the fixes we recommend for your website.",
        "clientLongEmail": "Hello, we reviewed your website and prepared a plan with your team.",
        "priorities": [
            {
                "title": f"Task {index}",
                "severity": "high",
                "whyItMatters": "Improves the ranking of key pages.",
                "recommendedFix": "Rewrite the page titles.",
                "estimatedHours": 2,
            }
            for index in range(priority_count)
        ],
    }

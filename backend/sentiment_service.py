from vaderSentiment.vaderSentiment import SentimentIntensityAnalyzer

analyzer = SentimentIntensityAnalyzer()


def sentiment_score(text):
    """VADER compound polarity of ``text``, rounded to 4 places (-1 .. 1)."""
    if not text or not text.strip():
        return 0.0
    return round(analyzer.polarity_scores(text)["compound"], 4)

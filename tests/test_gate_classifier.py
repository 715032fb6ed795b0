# tests/test_gate_classifier.py

"""Tests for gate detection on fetched pages."""

import unittest

from src.config.settings import Settings
from src.scrapers.gate_classifier import (
    VERDICT_HARD_GATE,
    VERDICT_NOT_APPLICABLE,
    VERDICT_PRODUCT,
    GateClassifier,
    classify,
)

PRODUCT_URL = "https://produto.mercadolivre.com.br/MLB-1234567890"

CAPTCHA_PAGE = """
<html><head><title>Verificação</title></head>
<body><div class="g-recaptcha" data-sitekey="x"></div>
<p>Confirme que você não é um robô.</p></body></html>
"""

LOGIN_PAGE = """
<html><head><title>Mercado Livre</title></head>
<body><h2>Para continuar, inicie sessão</h2>
<form><input name="user_id"></form></body></html>
"""

LOGIN_PAIR_PAGE = """
<html><body><h2>Identificação</h2>
<label>Telefone, e-mail ou usuário</label></body></html>
"""

# Real listing whose tracking scripts mention captcha
MIXED_PAGE = """
<html><head><title>Smartphone XYZ 128GB | Mercado Livre</title>
<script src="https://www.google.com/recaptcha/api.js"></script>
<script>window.captchaConfig = {enabled: false};</script>
</head><body>
<h1 class="ui-pdp-title">Smartphone XYZ 128GB</h1>
<span class="andes-money-amount">R$ 1.999</span>
</body></html>
"""

PLAIN_PRODUCT = """
<html><head><title>Cafeteira | Mercado Livre</title>
<meta itemprop="price" content="299.00"></head>
<body><h1 class="ui-pdp-title">Cafeteira</h1></body></html>
"""


class TestGateClassifier(unittest.TestCase):
    """Layered gate detection."""

    def setUp(self) -> None:
        self.classifier = GateClassifier()

    def test_plain_product_page(self) -> None:
        verdict = self.classifier.classify(PLAIN_PRODUCT, PRODUCT_URL)
        self.assertEqual(verdict.kind, VERDICT_PRODUCT)
        self.assertFalse(verdict.is_hard_gate)

    def test_captcha_page_is_hard_gate(self) -> None:
        verdict = self.classifier.classify(CAPTCHA_PAGE, PRODUCT_URL)
        self.assertEqual(verdict.kind, VERDICT_HARD_GATE)
        self.assertTrue(verdict.is_hard_gate)
        self.assertIn("challenge marker", verdict.reason)

    def test_login_page_is_hard_gate(self) -> None:
        verdict = self.classifier.classify(LOGIN_PAGE, PRODUCT_URL)
        self.assertTrue(verdict.is_hard_gate)
        self.assertIn("login marker", verdict.reason)

    def test_login_marker_pair(self) -> None:
        """'identificação' counts only together with 'e-mail'."""
        verdict = self.classifier.classify(LOGIN_PAIR_PAGE, PRODUCT_URL)
        self.assertTrue(verdict.is_hard_gate)

        only_first = "<html><body><h2>Identificação</h2></body></html>"
        verdict = self.classifier.classify(only_first, PRODUCT_URL)
        self.assertFalse(verdict.is_hard_gate)

    def test_auth_redirect_is_hard_gate(self) -> None:
        verdict = self.classifier.classify(
            "<html><body>Carregando…</body></html>",
            "https://www.mercadolivre.com.br/jms/mlb/lgz/login?go=x",
        )
        self.assertTrue(verdict.is_hard_gate)
        self.assertIn("auth redirect", verdict.reason)

    def test_auth_word_inside_path_segment_is_not_redirect(self) -> None:
        verdict = self.classifier.classify(
            "<html><body>ok</body></html>",
            "https://produto.mercadolivre.com.br/MLB-123-authentic-bag",
        )
        self.assertFalse(verdict.is_hard_gate)

    def test_mixed_signals_resolve_to_product(self) -> None:
        """Challenge markers plus a populated product title: not a gate."""
        verdict = self.classifier.classify(MIXED_PAGE, PRODUCT_URL)
        self.assertEqual(verdict.kind, VERDICT_PRODUCT)
        self.assertIn("overridden", verdict.reason)

    def test_page_data_overrides_signal(self) -> None:
        html = (
            '<html><head><script type="application/ld+json">{}</script>'
            "</head><body>captcha</body></html>"
        )
        self.assertFalse(
            self.classifier.classify(html, PRODUCT_URL).is_hard_gate
        )

    def test_branded_title_overrides_signal(self) -> None:
        html = (
            "<html><head><title>Tênis Corrida | Mercado Livre</title>"
            "</head><body>access denied widget</body></html>"
        )
        self.assertFalse(
            self.classifier.classify(html, PRODUCT_URL).is_hard_gate
        )

    def test_bare_brand_title_does_not_override(self) -> None:
        """A login page titled just with the brand stays a gate."""
        self.assertIsNone(self.classifier.real_page_marker(LOGIN_PAGE))

    def test_empty_heading_does_not_override(self) -> None:
        html = (
            '<html><body><h1 class="ui-pdp-title">  </h1>'
            "<div>hcaptcha</div></body></html>"
        )
        self.assertTrue(
            self.classifier.classify(html, PRODUCT_URL).is_hard_gate
        )

    def test_social_profile_not_applicable(self) -> None:
        verdict = self.classifier.classify(
            PLAIN_PRODUCT,
            "https://www.mercadolivre.com.br/social/loja?forceInApp=true",
        )
        self.assertEqual(verdict.kind, VERDICT_NOT_APPLICABLE)
        self.assertTrue(verdict.is_not_applicable)
        self.assertFalse(verdict.is_hard_gate)

    def test_social_host_not_applicable(self) -> None:
        verdict = self.classifier.classify(
            CAPTCHA_PAGE, "https://www.instagram.com/some_store/",
        )
        self.assertTrue(verdict.is_not_applicable)

    def test_custom_markers_per_instance(self) -> None:
        settings = Settings()
        settings.CHALLENGE_MARKERS = ["pardon our interruption"]
        html = "<html><body>Pardon our interruption</body></html>"
        verdict = classify(html, PRODUCT_URL, settings)
        self.assertTrue(verdict.is_hard_gate)
        self.assertFalse(classify(CAPTCHA_PAGE, PRODUCT_URL, settings).is_hard_gate)


if __name__ == "__main__":
    unittest.main()

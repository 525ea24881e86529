import unittest

from crm import errors
from crm.ui_strings import HISTORY_LABELS, MESSAGES, error_message, history_label, success_message


def _error_classes():
    pending = [errors.AppError]
    seen = []
    while pending:
        current = pending.pop()
        seen.append(current)
        pending.extend(current.__subclasses__())
    return seen


class UiStringsMessagesTest(unittest.TestCase):
    def test_every_error_class_has_a_message(self) -> None:
        for error_class in _error_classes():
            key = error_class.default_message_key
            self.assertIn(key, MESSAGES["error"], f"mensagem ausente: {error_class.__name__}")

    def test_messages_are_not_empty(self) -> None:
        for category, messages in MESSAGES.items():
            for key, message in messages.items():
                self.assertTrue(message.strip(), f"mensagem vazia em {category}:{key}")

    def test_success_message_formats_values(self) -> None:
        self.assertEqual(success_message("lead_converted", order_id=42), "Lead convertido no pedido #42.")
        self.assertEqual(success_message("lead_created", order_id=42), "Lead criado com sucesso.")

    def test_unknown_keys_fall_back(self) -> None:
        self.assertEqual(error_message("nao_existe", "Padrao"), "Padrao")
        self.assertEqual(error_message("nao_existe"), "nao_existe")

    def test_history_labels_are_complete(self) -> None:
        for action, info in HISTORY_LABELS.items():
            self.assertTrue(info["label"].strip(), f"label vazio: {action}")
            self.assertIn("icon", info)
        self.assertEqual(history_label("OUTRA_ACAO")["label"], "OUTRA_ACAO")


if __name__ == "__main__":
    unittest.main()

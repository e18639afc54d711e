import unittest

from cli_prompts import prompt_for_confirmation


class PromptForConfirmationTests(unittest.TestCase):
    def test_affirmative_answers_confirm(self) -> None:
        for answer in ("y", "Y", "yes", " YES "):
            with self.subTest(answer=answer):
                self.assertTrue(prompt_for_confirmation("Proceed?", input_func=lambda prompt: answer))

    def test_anything_else_declines(self) -> None:
        for answer in ("", "n", "no", "yep", "1"):
            with self.subTest(answer=answer):
                self.assertFalse(prompt_for_confirmation("Proceed?", input_func=lambda prompt: answer))

    def test_prompt_text_includes_default(self) -> None:
        prompts: list[str] = []

        def capture(prompt: str) -> str:
            prompts.append(prompt)
            return "n"

        prompt_for_confirmation("Are you sure?", input_func=capture)

        self.assertEqual(["Are you sure? (y/N) "], prompts)

    def test_eof_and_interrupt_decline(self) -> None:
        for exc in (EOFError, KeyboardInterrupt):
            captured: list[str] = []

            def raise_exc(_: str, exc=exc) -> str:
                raise exc

            with self.subTest(exc=exc.__name__):
                self.assertFalse(
                    prompt_for_confirmation("Proceed?", input_func=raise_exc, print_func=captured.append)
                )
                self.assertEqual([""], captured)


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
